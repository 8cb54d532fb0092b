from app.models.audit_log import AuditLog
from app.models.kyc_document import KYCDocument
from app.models.loan_application import LoanApplication
from app.models.loan_product import LoanProduct
from app.models.notification import Notification
from app.models.payment_installment import PaymentInstallment
from app.models.profile import Profile
from app.models.risk_assessment import RiskAssessment

__all__ = [
    "AuditLog",
    "KYCDocument",
    "LoanApplication",
    "LoanProduct",
    "Notification",
    "PaymentInstallment",
    "Profile",
    "RiskAssessment",
]
