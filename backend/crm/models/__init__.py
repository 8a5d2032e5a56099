from .auth import Team, User, SessionToken, Permission
from .customers import Customer, Holder, Unassigned, PublicPool, HeldBy
from .allocation import CustomerAllocation, TransferRequest, DailyLimitApproval
from .activity import CallLog, VisitSchedule, Notice
from .audit import AuditLog

__all__ = [
    'Team', 'User', 'SessionToken', 'Permission',
    'Customer', 'Holder', 'Unassigned', 'PublicPool', 'HeldBy',
    'CustomerAllocation', 'TransferRequest', 'DailyLimitApproval',
    'CallLog', 'VisitSchedule', 'Notice',
    'AuditLog',
]
