from .directory_repository import DirectoryRepository
from .nda_repository import NdaRepository
from .notification_repository import NotificationRepository
from .project_repository import ProjectRepository
from .question_repository import QuestionRepository
from .response_repository import ResponseRepository
from .status_event_repository import StatusEventRepository
from .tender_repository import TenderRepository

__all__ = [
    "DirectoryRepository",
    "NdaRepository",
    "NotificationRepository",
    "ProjectRepository",
    "QuestionRepository",
    "ResponseRepository",
    "StatusEventRepository",
    "TenderRepository",
]
