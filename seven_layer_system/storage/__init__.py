from .signal_store import SignalStore, SQLiteSignalStore, InMemorySignalStore

__all__ = ['SignalStore', 'SQLiteSignalStore', 'InMemorySignalStore']
