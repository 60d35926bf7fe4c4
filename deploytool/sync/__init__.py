from .data_sync_service import DataSyncService, BULK_LOAD_TIMEOUT

__all__ = ['DataSyncService', 'BULK_LOAD_TIMEOUT']
