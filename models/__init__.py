"""
Persistence package. `storage` is the process-wide DBStorage; the application
factory calls storage.reload(DATABASE_URL) before serving requests.
"""
from models.db_storage import DBStorage

storage = DBStorage()
