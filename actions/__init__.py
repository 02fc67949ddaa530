from __future__ import annotations

from typing import Any, Callable

from actions import (
    applications,
    assessments,
    auth_actions,
    dashboard,
    documents,
    job_offers,
    messaging,
    notifications,
    profiles,
    selection,
    templates,
)
from utils import ApiError, AuthContext


Handler = Callable[[dict, "AuthContext | None", Any, Any], Any]

ACTIONS: dict[str, Handler] = {
    "LOGIN_EXCHANGE": auth_actions.login_exchange,
    "SESSION_VALIDATE": auth_actions.session_validate,
    "GET_ME": auth_actions.get_me,
    "LOGOUT": auth_actions.logout,
    "PROFILE_GET": profiles.profile_get,
    "PROFILE_UPDATE": profiles.profile_update,
    "PROFILE_LIST": profiles.profile_list,
    "WORK_EXPERIENCE_ADD": profiles.work_experience_add,
    "WORK_EXPERIENCE_LIST": profiles.work_experience_list,
    "WORK_EXPERIENCE_DELETE": profiles.work_experience_delete,
    "JOB_OFFER_LIST": job_offers.job_offer_list,
    "JOB_OFFER_GET": job_offers.job_offer_get,
    "JOB_OFFER_CREATE": job_offers.job_offer_create,
    "JOB_OFFER_UPDATE": job_offers.job_offer_update,
    "JOB_OFFER_DELETE": job_offers.job_offer_delete,
    "APPLICATION_CREATE": applications.application_create,
    "APPLICATION_LIST": applications.application_list,
    "APPLICATION_STATUS_SET": applications.application_status_set,
    "PROCESS_CREATE": selection.process_create,
    "PROCESS_GET": selection.process_get,
    "PROCESS_LIST": selection.process_list,
    "PROCESS_UPDATE": selection.process_update,
    "STAGE_ADD": selection.stage_add,
    "STAGE_UPDATE": selection.stage_update,
    "STAGE_DELETE": selection.stage_delete,
    "EVALUATION_SAVE": selection.evaluation_save,
    "INTERVIEW_SCHEDULE": selection.interview_schedule,
    "INTERVIEW_UPDATE": selection.interview_update,
    "TEMPLATE_LIST": templates.template_list,
    "TEMPLATE_CREATE": templates.template_create,
    "TEMPLATE_UPDATE": templates.template_update,
    "TEMPLATE_DELETE": templates.template_delete,
    "TEMPLATE_DUPLICATE": templates.template_duplicate,
    "CRITERION_ADD": templates.criterion_add,
    "CRITERION_DELETE": templates.criterion_delete,
    "ASSESSMENT_LIST": assessments.assessment_list,
    "ASSESSMENT_GET": assessments.assessment_get,
    "ASSESSMENT_CREATE": assessments.assessment_create,
    "ASSESSMENT_QUESTIONS_SAVE": assessments.assessment_questions_save,
    "ASSESSMENT_START": assessments.assessment_start,
    "ASSESSMENT_SUBMIT": assessments.assessment_submit,
    "ASSESSMENT_RESULTS_LIST": assessments.assessment_results_list,
    "ASSESSMENT_EXPIRE_SWEEP": assessments.assessment_expire_sweep,
    "DOCUMENT_CREATE": documents.document_create,
    "DOCUMENT_LIST": documents.document_list,
    "DOCUMENT_REPLACE_FILE": documents.document_replace_file,
    "DOCUMENT_UPDATE": documents.document_update,
    "DOCUMENT_DELETE": documents.document_delete,
    "DOCUMENT_VERSIONS": documents.document_versions,
    "DOCUMENT_REVIEW": documents.document_review,
    "DOCUMENT_APPROVALS": documents.document_approvals,
    "MESSAGE_SEND": messaging.message_send,
    "MESSAGE_LIST": messaging.message_list,
    "MESSAGE_MARK_READ": messaging.message_mark_read,
    "NOTIFICATION_LIST": notifications.notification_list,
    "NOTIFICATION_MARK_READ": notifications.notification_mark_read,
    "NOTIFICATION_MARK_ALL_READ": notifications.notification_mark_all_read,
    "EMAIL_OUTBOX_LIST": notifications.email_outbox_list,
    "ACTIVITY_LIST": dashboard.activity_list,
    "DASHBOARD_METRICS": dashboard.dashboard_metrics,
}


def dispatch(action: str, data: Any, auth: AuthContext | None, db, cfg) -> Any:
    handler = ACTIONS.get(str(action or "").upper().strip())
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action}")
    if data is not None and not isinstance(data, dict):
        raise ApiError("BAD_REQUEST", "data must be an object")
    return handler(data or {}, auth, db, cfg)
