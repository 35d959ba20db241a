# campaign_database.py

import uuid

from extensions import db
from utils.datetime_utils import utc_now


def _new_campaign_id() -> str:
    return uuid.uuid4().hex


# --- Campaign Model ---
class Campaign(db.Model):
    """A campaign brokered to the Gateway.

    status_code is authoritative; status is always derived from it through the
    campaign state machine. remote_id is assigned by the Gateway on registration
    and never cleared afterwards.
    """
    __tablename__ = 'campaign'

    id = db.Column(db.String(32), primary_key=True, default=_new_campaign_id)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(200), nullable=False)

    # Message content
    message_type = db.Column(db.String(10), nullable=False, default='LMS')  # 'LMS', 'MMS', 'RCS'
    title = db.Column(db.String(200), nullable=True)
    content = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(500), nullable=True)
    url_link = db.Column(db.String(500), nullable=True)
    rcs_type = db.Column(db.Integer, nullable=True)  # 2 = slide
    rcs_slides = db.Column(db.JSON, nullable=True)
    sender_number = db.Column(db.String(20), nullable=True)
    rcv_type = db.Column(db.Integer, nullable=False, default=0)  # 0 = targeted, 10 = recipient file
    target_count = db.Column(db.Integer, nullable=False, default=1000)

    # Gateway lifecycle
    remote_id = db.Column(db.String(100), unique=True, nullable=True, index=True)
    status_code = db.Column(db.Integer, nullable=False, default=5)
    status = db.Column(db.String(40), nullable=False, default='draft')
    environment = db.Column(db.String(20), nullable=False, default='sandbox')  # 'sandbox', 'production'

    # Targeting
    targeting = db.Column(db.JSON, nullable=True)
    compiled_filter = db.Column(db.JSON, nullable=True)
    filter_description = db.Column(db.Text, nullable=True)
    filter_diagnostics = db.Column(db.JSON, nullable=True)  # Unresolved region names etc.

    # Scheduling
    requested_send_at = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_send_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Delivery counts reported by callbacks
    sent_count = db.Column(db.Integer, nullable=True)
    success_count = db.Column(db.Integer, nullable=True)
    fail_count = db.Column(db.Integer, nullable=True)
    status_reason = db.Column(db.Text, nullable=True)

    # Last failed Gateway interaction, shown to the user
    last_error_code = db.Column(db.String(50), nullable=True)
    last_error_message = db.Column(db.Text, nullable=True)

    # Per-campaign in-flight flag for create/approve/test-send
    in_flight = db.Column(db.Boolean, nullable=False, default=False)
    in_flight_since = db.Column(db.DateTime(timezone=True), nullable=True)

    last_callback_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    version = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {'version_id_col': version}

    @property
    def is_registered(self) -> bool:
        return self.remote_id is not None

    def __repr__(self):
        return f'<Campaign {self.id} remote={self.remote_id} status={self.status_code}>'
