from examhub.client.api import ExamApiClient
from examhub.client.session import ExamTakingSession, SessionState

__all__ = ["ExamApiClient", "ExamTakingSession", "SessionState"]
