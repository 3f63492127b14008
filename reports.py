import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from config import REVIEWER_USER_ID
from errors import BadRequest, NotFound
from models import Comment, Report, ReportImage, User, utcnow
from notifications import NotificationDispatcher
from schemas import CommentCreate, ReportCreate, ReportUpdate

logger = logging.getLogger(__name__)

# Columns a PUT may touch. Anything else in the body is ignored.
UPDATABLE_FIELDS = (
    "title",
    "description",
    "category",
    "location",
    "status",
    "priority",
    "reporter_id",
    "assigned_to",
    "contact_name",
    "contact_phone",
    "contact_email",
)
REQUIRED_FIELDS = ("title", "description", "category", "location", "status", "priority")
USER_REFERENCES = ("reporter_id", "assigned_to")


def report_to_dict(report: Report):
    return {
        "id": report.id,
        "title": report.title,
        "description": report.description,
        "category": report.category,
        "location": report.location,
        "status": report.status,
        "priority": report.priority,
        "reporter_id": report.reporter_id,
        "assigned_to": report.assigned_to,
        "contact_name": report.contact_name,
        "contact_phone": report.contact_phone,
        "contact_email": report.contact_email,
        "images": [image.image_url for image in report.images],
        "created_at": report.created_at,
        "updated_at": report.updated_at,
    }


def comment_to_dict(comment: Comment):
    return {
        "id": comment.id,
        "report_id": comment.report_id,
        "user_id": comment.user_id,
        "text": comment.text,
        "created_at": comment.created_at,
    }


class ReportStore:
    """CRUD over reports and their images. The only writer of report rows."""

    def __init__(self, session: Session, dispatcher: NotificationDispatcher):
        self.session = session
        self.dispatcher = dispatcher

    # ---------- helpers ----------

    def _get(self, report_id: int) -> Report:
        report = (
            self.session.query(Report)
            .options(selectinload(Report.images))
            .filter(Report.id == report_id)
            .first()
        )
        if report is None:
            raise NotFound("Report not found")
        return report

    def _check_users(self, values: dict):
        for field in USER_REFERENCES:
            user_id = values.get(field)
            if user_id is not None and self.session.get(User, user_id) is None:
                raise BadRequest(f"Unknown user for field: {field}")

    def _add_images(self, report_id: int, urls):
        now = utcnow()
        for url in urls:
            self.session.add(ReportImage(report_id=report_id, image_url=url, created_at=now))

    # ---------- operations ----------

    def create(self, data: ReportCreate) -> int:
        self._check_users({"reporter_id": data.reporter_id, "assigned_to": data.assigned_to})

        now = utcnow()
        report = Report(
            title=data.title,
            description=data.description,
            category=data.category,
            location=data.location,
            status=data.status,
            priority=data.priority,
            reporter_id=data.reporter_id,
            assigned_to=data.assigned_to,
            contact_name=data.contact_name,
            contact_phone=data.contact_phone,
            contact_email=data.contact_email,
            created_at=now,
            updated_at=now,
        )
        try:
            self.session.add(report)
            self.session.flush()
            if data.images:
                self._add_images(report.id, data.images)
                self.session.flush()
            self.dispatcher.dispatch(
                self.session,
                title="New Report Submitted",
                message=f'A new report "{report.title}" has been submitted and is awaiting review.',
                type="info",
                related_issue_id=report.id,
                user_id=REVIEWER_USER_ID,
                sender_id=report.reporter_id,
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("Report %s created", report.id)
        return report.id

    def get_all(self):
        reports = (
            self.session.query(Report)
            .options(selectinload(Report.images))
            .order_by(Report.created_at.desc(), Report.id.desc())
            .all()
        )
        return [report_to_dict(r) for r in reports]

    def get_by_id(self, report_id: int):
        return report_to_dict(self._get(report_id))

    def update(self, report_id: int, data: ReportUpdate):
        report = self._get(report_id)

        changes = {name: getattr(data, name) for name in UPDATABLE_FIELDS if name in data.model_fields_set}
        if not changes:
            raise BadRequest("No fields to update")
        for name in REQUIRED_FIELDS:
            if name in changes and changes[name] is None:
                raise BadRequest(f"Field cannot be null: {name}")
        self._check_users(changes)

        previous_status = report.status
        try:
            for name, value in changes.items():
                setattr(report, name, value)
            report.updated_at = utcnow()

            if "images" in data.model_fields_set and data.images is not None:
                self.session.query(ReportImage).filter(ReportImage.report_id == report_id).delete(
                    synchronize_session=False
                )
                self._add_images(report_id, data.images)
            self.session.flush()

            if report.status != previous_status:
                self.dispatcher.dispatch(
                    self.session,
                    title="Report Status Updated",
                    message=f'The status of report "{report.title}" has been changed to {report.status}.',
                    type="update",
                    related_issue_id=report.id,
                    user_id=report.reporter_id,
                    sender_id=report.assigned_to,
                )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info("Report %s updated (%s)", report_id, ", ".join(sorted(changes)))
        return report_to_dict(report)

    def delete(self, report_id: int):
        report = self.session.get(Report, report_id)
        if report is None:
            raise NotFound("Report not found")
        title, reporter_id = report.title, report.reporter_id

        try:
            self.session.query(ReportImage).filter(ReportImage.report_id == report_id).delete(
                synchronize_session=False
            )
            self.session.query(Comment).filter(Comment.report_id == report_id).delete(
                synchronize_session=False
            )
            removed = self.session.query(Report).filter(Report.id == report_id).delete(
                synchronize_session=False
            )
            if removed == 0:
                self.session.rollback()
                raise NotFound("Report not found")

            self.dispatcher.dispatch(
                self.session,
                title="Report Deleted",
                message=f'The report "{title}" (#{report_id}) has been removed.',
                type="warning",
                user_id=reporter_id,
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.expunge(report)
        logger.info("Report %s deleted", report_id)

    # ---------- comments ----------

    def add_comment(self, report_id: int, data: CommentCreate):
        self._get(report_id)
        if self.session.get(User, data.user_id) is None:
            raise BadRequest("Unknown user for field: user_id")

        comment = Comment(report_id=report_id, user_id=data.user_id, text=data.text, created_at=utcnow())
        try:
            self.session.add(comment)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return comment_to_dict(comment)

    def list_comments(self, report_id: int):
        self._get(report_id)
        comments = (
            self.session.query(Comment)
            .filter(Comment.report_id == report_id)
            .order_by(Comment.created_at.asc(), Comment.id.asc())
            .all()
        )
        return [comment_to_dict(c) for c in comments]
