from .config import LifecycleConfig
from .models import BackupArtifact, BackupClass, RetentionPolicy, RemoteEndpoint
from .backup import BackupEngine
from .restore import RestoreEngine
from .migrate import MigrationOrchestrator

__version__ = "0.3.0"
__author__ = "WealthPath Infrastructure"
__url__ = "https://github.com/wealthpath/pg-lifecycle"
