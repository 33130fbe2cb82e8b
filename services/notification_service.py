import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
import os
from datetime import datetime, timedelta, timezone
from db.repository import repository
from services.regional_service import regional_service
from utils.logger import logger
from config import (
    ALERT_RECIPIENTS_FILE,
    EMAIL_SENDER_EMAIL,
    EMAIL_SENDER_PASSWORD,
    EMAIL_SMTP_SERVER,
    EMAIL_SMTP_PORT,
    TRENDING_INFLUENCE_THRESHOLD
)


def load_recipients(path=ALERT_RECIPIENTS_FILE):
    if not os.path.exists(path):
        return []
    with open(path, 'r') as f:
        return [line.strip() for line in f if line.strip() and not line.startswith('#')]


def send_email(subject, body):
    """
    Sends a plain-text email to every alert recipient. Returns True when sent;
    unconfigured SMTP or an empty recipient list logs a warning and skips.
    """
    if not EMAIL_SENDER_EMAIL or not EMAIL_SENDER_PASSWORD or not EMAIL_SMTP_SERVER:
        logger.warn("Email sending is not fully configured. Skipping email notification.")
        return False

    try:
        recipients = load_recipients()
    except OSError as e:
        logger.error(f"Error reading alert recipients file: {e}")
        return False

    if not recipients:
        logger.warn("No alert recipients found. Skipping email notification.")
        return False

    msg = MIMEMultipart()
    msg['From'] = EMAIL_SENDER_EMAIL
    msg['To'] = ", ".join(recipients)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain', 'utf-8'))

    try:
        logger.log(f"Sending '{subject}' to {recipients}...")
        with smtplib.SMTP(EMAIL_SMTP_SERVER, EMAIL_SMTP_PORT) as server:
            server.starttls()
            server.login(EMAIL_SENDER_EMAIL, EMAIL_SENDER_PASSWORD)
            server.send_message(msg)
        logger.log("Email notification sent successfully.")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False


class NotificationService:
    def __init__(self):
        # candidate id -> date of the last trending alert
        self._alerted = {}

    def send_trending_alert(self, candidate):
        name = candidate.get('name_ku_sorani') or candidate.get('name')
        region = candidate.get('governorate') or 'unknown'
        score = candidate.get('influence_score') or 0

        if regional_service.is_kurdistan_region(region):
            subject = f"🔥 PRIORITY: Kurdistan Candidate Trending: {name}"
        else:
            subject = f"🔥 Trending Candidate Alert: {name}"

        body = f"""
    Trending Candidate Alert

    Candidate: {name}
    Region: {region}
    Party: {candidate.get('party') or 'Unknown'}
    Influence Score: {score}
    Last Activity: {candidate.get('last_activity') or 'Unknown'}

    This candidate is showing significant recent activity and may be gaining traction.
    """
        logger.log(f"🚨 Sending trending alert for candidate: {name}")
        return send_email(subject, body)

    def check_for_trending_candidates(self, limit=5):
        """
        Alerts once per day for each candidate whose influence passed the threshold
        and who was mentioned in the last hour. A failed send is retried on the next
        check. Returns the alerted candidate ids.
        """
        today = datetime.now(timezone.utc).date()
        hour_ago = (datetime.now(timezone.utc) - timedelta(hours=1)).strftime('%Y-%m-%dT%H:%M:%S')
        alerted = []
        for candidate in repository.top_candidates(limit):
            if (candidate.get('influence_score') or 0) <= TRENDING_INFLUENCE_THRESHOLD:
                break
            if (candidate.get('last_activity') or '') < hour_ago:
                continue
            if self._alerted.get(candidate['id']) == today:
                continue
            if not self.send_trending_alert(candidate):
                continue
            self._alerted[candidate['id']] = today
            alerted.append(candidate['id'])
        return alerted

    def send_daily_digest(self, metrics):
        total = metrics.get('total_mentions', 0)
        kurdistan = metrics.get('kurdistan_mentions', 0)
        ratio = f"{kurdistan / total * 100:.1f}%" if total else 'n/a'
        trend = {'up': '📈 Improving', 'down': '📉 Declining'}.get(metrics.get('sentiment_trend'), '➡️ Stable')

        top = '\n'.join(
            f"    #{i + 1}: {c['name']} ({c.get('region') or 'unknown'}) - Score: {c.get('influence_score', 0)}"
            for i, c in enumerate(metrics.get('top_candidates', [])[:5])
        ) or '    No candidates yet'

        subject = f"📊 HamlatAI Daily Digest - {datetime.now(timezone.utc).strftime('%Y-%m-%d')}"
        body = f"""
    Daily Digest Report

    Total Mentions (24h): {total}
    Kurdistan Mentions (24h): {kurdistan}
    Kurdistan Ratio: {ratio}
    Overall Sentiment: {metrics.get('overall_sentiment', 0)}
    Sentiment Trend: {trend}

    Top Candidates:
{top}
    """
        logger.log("📊 Sending daily digest...")
        return send_email(subject, body)

    def check_system_health(self):
        """
        Emails an alert when nothing was collected in the last hour.
        """
        recent = repository.count_mentions(since=datetime.now(timezone.utc) - timedelta(hours=1))
        if recent:
            return False
        logger.warn("No mentions collected in the last hour.")
        return send_email(
            '⚠️ HamlatAI Collection Alert',
            'Collection System Alert: no mentions collected in the last hour. Please check the collectors and API credentials.'
        )


notification_service = NotificationService()
