from .cache import RedisCache, get_cache
from .settings import SettingsService, get_settings_service
from .branches import BranchService, get_branch_service
from .subjects import SubjectService, get_subject_service
from .holidays import HolidayService, get_holiday_service
from .classes import ClassService, get_class_service
from .availability import AvailabilityService, get_availability_service
from .enrollments import EnrollmentService, get_enrollment_service
from .parents import ParentService, get_parent_service
from .makeup import MakeupService, get_makeup_service
from .teachers import TeacherService, get_teacher_service
from .trials import TrialService, get_trial_service
from .reschedule import RescheduleService, get_reschedule_service
from .events import EventService, get_event_service
from .notifications import NotificationService, get_notification_service
from .webhook import WebhookHandler, handle_webhook
from .liff import LiffService, get_liff_service
from .dashboard import DashboardService, get_dashboard_service
