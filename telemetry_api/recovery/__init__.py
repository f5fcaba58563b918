from .processor import RecoveryProcessor, RecoveryReport
from .sweeper import RecoverySweeper

__all__ = ["RecoveryProcessor", "RecoveryReport", "RecoverySweeper"]
