# crm_database.py

from extensions import db
from utils.datetime_utils import utc_now
from services.enums import (
    DealStage, DealStatus, ClientTemperature, TaskPriority, TaskStatus
)


# --- Deal Model ---
class Deal(db.Model):
    """One shared property link and the client pipeline behind it"""
    __tablename__ = 'deals'

    id = db.Column(db.Integer, primary_key=True)
    link_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    agent_id = db.Column(db.String(100), nullable=False, index=True)
    client_id = db.Column(db.String(100), nullable=True)  # Unknown until the client identifies
    deal_name = db.Column(db.String(200), nullable=False)
    property_ids = db.Column(db.JSON, nullable=False, default=list)

    # Pipeline position
    deal_stage = db.Column(db.String(20), nullable=False, default=DealStage.CREATED.value, index=True)
    deal_status = db.Column(db.String(20), nullable=False, default=DealStatus.ACTIVE.value, index=True)

    # Engagement (0-100)
    engagement_score = db.Column(db.Integer, nullable=False, default=0)
    score_high_water_mark = db.Column(db.Integer, nullable=False, default=0)
    client_temperature = db.Column(db.String(10), nullable=False, default=ClientTemperature.COLD.value)
    session_count = db.Column(db.Integer, nullable=False, default=0)
    total_time_spent = db.Column(db.Integer, nullable=False, default=0)  # seconds

    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utc_now)

    # Optimistic concurrency
    version_id = db.Column(db.Integer, nullable=False)

    sessions = db.relationship('BrowsingSession', backref='deal', lazy='dynamic')
    tasks = db.relationship('Task', backref='deal', lazy='dynamic')
    milestones = db.relationship('DealMilestone', backref='deal', lazy='dynamic')

    __mapper_args__ = {'version_id_col': version_id}

    __table_args__ = (
        db.Index('idx_deals_status_activity', 'deal_status', 'last_activity_at'),
    )

    def __repr__(self):
        return f'<Deal {self.id}: link={self.link_id} stage={self.deal_stage} score={self.engagement_score}>'

    @property
    def property_count(self) -> int:
        return len(self.property_ids or [])

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'link_id': self.link_id,
            'agent_id': self.agent_id,
            'client_id': self.client_id,
            'deal_name': self.deal_name,
            'property_ids': list(self.property_ids or []),
            'deal_stage': self.deal_stage,
            'deal_status': self.deal_status,
            'engagement_score': self.engagement_score,
            'client_temperature': self.client_temperature,
            'session_count': self.session_count,
            'total_time_spent': self.total_time_spent,
            'last_activity_at': self.last_activity_at.isoformat() if self.last_activity_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# --- Browsing Session Models ---
class BrowsingSession(db.Model):
    """A client's continuous visit to a shared link"""
    __tablename__ = 'browsing_sessions'

    id = db.Column(db.String(100), primary_key=True)  # Client-generated session id
    link_id = db.Column(db.String(100), nullable=False, index=True)
    deal_id = db.Column(db.Integer, db.ForeignKey('deals.id'), nullable=False, index=True)
    is_return_visit = db.Column(db.Boolean, nullable=False, default=False)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    last_active_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    client_context = db.Column(db.JSON, nullable=True)  # device, referrer, ...
    feedback = db.Column(db.JSON, nullable=True)
    final_score = db.Column(db.Integer, nullable=True)

    events = db.relationship('InteractionEvent', backref='session', lazy='dynamic',
                             order_by='InteractionEvent.occurred_at')

    def __repr__(self):
        return f'<BrowsingSession {self.id}: link={self.link_id} open={self.ended_at is None}>'

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class InteractionEvent(db.Model):
    """One client action on one property"""
    __tablename__ = 'interaction_events'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(100), db.ForeignKey('browsing_sessions.id'), nullable=False, index=True)
    link_id = db.Column(db.String(100), nullable=False)
    property_id = db.Column(db.String(100), nullable=False)
    action = db.Column(db.String(20), nullable=False)  # view, like, dislike, consider, detail
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)
    event_metadata = db.Column(db.JSON, nullable=True)

    def __repr__(self):
        return f'<InteractionEvent {self.id}: {self.action} {self.property_id}>'


# --- Task Models ---
class Task(db.Model):
    """Agent follow-up work, mostly generated by automation"""
    __tablename__ = 'tasks'

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey('deals.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    task_type = db.Column(db.String(50), nullable=False)
    priority = db.Column(db.String(20), nullable=False, default=TaskPriority.MEDIUM.value)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.PENDING.value, index=True)
    is_automated = db.Column(db.Boolean, nullable=False, default=True)
    trigger_type = db.Column(db.String(30), nullable=True)
    milestone_tag = db.Column(db.String(100), nullable=True)

    due_date = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)
    completed_at = db.Column(db.DateTime(timezone=True))

    # At most one task per milestone per deal
    __table_args__ = (
        db.UniqueConstraint('deal_id', 'milestone_tag', name='unique_deal_milestone_task'),
    )

    def __repr__(self):
        return f'<Task {self.id}: {self.title}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'deal_id': self.deal_id,
            'title': self.title,
            'description': self.description,
            'type': self.task_type,
            'priority': self.priority,
            'status': self.status,
            'is_automated': self.is_automated,
            'trigger_type': self.trigger_type,
            'milestone_tag': self.milestone_tag,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class DealMilestone(db.Model):
    """First upward crossing of a score threshold"""
    __tablename__ = 'deal_milestones'

    id = db.Column(db.Integer, primary_key=True)
    deal_id = db.Column(db.Integer, db.ForeignKey('deals.id'), nullable=False, index=True)
    name = db.Column(db.String(50), nullable=False)
    score = db.Column(db.Integer, nullable=False)
    reached_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        db.UniqueConstraint('deal_id', 'name', name='unique_deal_milestone'),
    )

    def __repr__(self):
        return f'<DealMilestone {self.deal_id}: {self.name} at {self.score}>'
