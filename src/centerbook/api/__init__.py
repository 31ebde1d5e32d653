from .base import CenterApiError, HttpError, NetworkFailure, RequestTimeout, AuthError, SessionExpired, NoRefreshToken, MalformedResponse
from .base import ScheduleSlot, Subscription, SubscriptionType, Reservation
from .session import SessionStore, JsonFileStorage, MemoryStorage
from .http_client import AuthenticatedClient
from .center_client import CenterApi
from .client_factory import create_client, load_client_from_config, load_config
from .slot_selection import order_slots, select_best_slot
