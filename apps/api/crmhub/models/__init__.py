from crmhub.models.audit import AuditLog, ComplianceLog, SecurityEvent, UserActivity
from crmhub.identity.models import Profile, UserOnboarding, UserPreferences, UserSecuritySettings
from crmhub.contacts.models import EntityAddress, EntityEmail, EntityPhone
from crmhub.rbac.models import Permission, Role, RoleDelegation, RolePermission, TeamAssignment, UserRole
from crmhub.crm.models import (
	CRMCommunication,
	CRMContact,
	CRMDocument,
	CRMJob,
	CRMLead,
	CRMNote,
	CRMOpportunity,
	CRMPipeline,
	CRMProduct,
	CRMQuote,
	CRMReferral,
	CRMRelationship,
)
from crmhub.tasks.models import Task, TaskAssignment, TaskBoard, TaskComment, TaskDependency, TaskList, TaskTimeEntry
from crmhub.inventory.models import InventoryItem, InventoryLocation, InventoryTransaction, PurchaseOrder, PurchaseOrderItem
from crmhub.accounting.models import Account, AccountMapping, JournalEntry, JournalEntryLine, PaymentTransaction, SyncLog

__all__ = [
	"AuditLog",
	"UserActivity",
	"SecurityEvent",
	"ComplianceLog",
	"Profile",
	"UserPreferences",
	"UserSecuritySettings",
	"UserOnboarding",
	"EntityEmail",
	"EntityPhone",
	"EntityAddress",
	"Role",
	"Permission",
	"RolePermission",
	"UserRole",
	"RoleDelegation",
	"TeamAssignment",
	"CRMContact",
	"CRMLead",
	"CRMOpportunity",
	"CRMQuote",
	"CRMJob",
	"CRMReferral",
	"CRMProduct",
	"CRMPipeline",
	"CRMCommunication",
	"CRMDocument",
	"CRMRelationship",
	"CRMNote",
	"TaskBoard",
	"TaskList",
	"Task",
	"TaskAssignment",
	"TaskDependency",
	"TaskComment",
	"TaskTimeEntry",
	"InventoryLocation",
	"InventoryItem",
	"InventoryTransaction",
	"PurchaseOrder",
	"PurchaseOrderItem",
	"Account",
	"JournalEntry",
	"JournalEntryLine",
	"PaymentTransaction",
	"AccountMapping",
	"SyncLog",
]
