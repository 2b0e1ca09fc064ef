# Import all models so they register with SQLAlchemy Base.metadata
# This ensures Base.metadata.create_all() creates all tables

from models.profile import Profile
from models.conversation import Conversation, ConversationMessage
from models.observability_log import ObservabilityLogEntry
from models.intervention import Intervention
from models.check_in import CheckIn
from models.journal import JournalEntry
from models.biometric_log import BiometricLog
from models.goal import Goal
from models.coping_activity import CopingActivity
from models.relapse import Relapse
from models.notification import Notification

__all__ = [
    "Profile",
    "Conversation",
    "ConversationMessage",
    "ObservabilityLogEntry",
    "Intervention",
    "CheckIn",
    "JournalEntry",
    "BiometricLog",
    "Goal",
    "CopingActivity",
    "Relapse",
    "Notification",
]
