# Import every model module so Base.metadata knows all tables.
from timegate.core.audit.models import AuditLog  # noqa: F401
from timegate.core.rbac.models import User, ProjectMembership  # noqa: F401
from timegate.core.organisations.models import Organisation  # noqa: F401
from timegate.core.projects.models import Project  # noqa: F401
from timegate.core.entries.models import TimeEntry, EntryMessage  # noqa: F401
from timegate.core.approvals.models import ProjectApprovalSettings, TimeSheetApproval  # noqa: F401
from timegate.core.timesheets.models import TimeSheet, TimeSheetEntry  # noqa: F401
from timegate.core.invitations.models import Pii, Contact, Invitation  # noqa: F401
