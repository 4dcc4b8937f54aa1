from .user import User
from .asset import Asset
from .order import Order, OrderItem
from .license import License
from .download_log import DownloadLog
from .webhook_event import WebhookEvent
from .base import Base
