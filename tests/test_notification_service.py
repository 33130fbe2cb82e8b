"""
Tests for the notification_service module.
"""

import unittest
from datetime import datetime, timedelta, timezone
from contextlib import ExitStack
from unittest.mock import patch

from services import notification_service as module
from services.notification_service import NotificationService, load_recipients, send_email


def email_configured(stack, recipients=('team@example.com',)):
    """Patches SMTP settings and recipients; returns the SMTP class mock."""
    stack.enter_context(patch.object(module, 'EMAIL_SENDER_EMAIL', 'alerts@example.com'))
    stack.enter_context(patch.object(module, 'EMAIL_SENDER_PASSWORD', 'secret'))
    stack.enter_context(patch.object(module, 'EMAIL_SMTP_SERVER', 'smtp.example.com'))
    stack.enter_context(patch.object(module, 'load_recipients', return_value=list(recipients)))
    return stack.enter_context(patch('services.notification_service.smtplib.SMTP'))


def sent_message(mock_smtp):
    server = mock_smtp.return_value.__enter__.return_value
    return server.send_message.call_args.args[0]


class TestSendEmail(unittest.TestCase):

    def test_unconfigured_skips(self):
        with patch('services.notification_service.smtplib.SMTP') as mock_smtp:
            self.assertFalse(send_email('subject', 'body'))
        mock_smtp.assert_not_called()

    def test_no_recipients_skips(self):
        with ExitStack() as stack:
            mock_smtp = email_configured(stack, recipients=())
            self.assertFalse(send_email('subject', 'body'))
        mock_smtp.assert_not_called()

    def test_sends_to_all_recipients(self):
        with ExitStack() as stack:
            mock_smtp = email_configured(stack, recipients=('a@example.com', 'b@example.com'))
            self.assertTrue(send_email('Hello', 'body'))
        server = mock_smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('alerts@example.com', 'secret')
        self.assertEqual(sent_message(mock_smtp)['To'], 'a@example.com, b@example.com')

    def test_smtp_failure_returns_false(self):
        with ExitStack() as stack:
            mock_smtp = email_configured(stack)
            mock_smtp.side_effect = OSError('connection refused')
            self.assertFalse(send_email('Hello', 'body'))


class TestLoadRecipients(unittest.TestCase):

    def test_missing_file(self):
        self.assertEqual(load_recipients('/nonexistent/recipients.txt'), [])


def test_load_recipients_skips_comments(tmp_path):
    path = tmp_path / 'recipients.txt'
    path.write_text('# team\nteam@example.com\n\nops@example.com\n')
    assert load_recipients(str(path)) == ['team@example.com', 'ops@example.com']


def test_kurdistan_candidate_alert_is_priority():
    with ExitStack() as stack:
        mock_smtp = email_configured(stack)
        assert NotificationService().send_trending_alert(
            {"name": 'Rewaz Faiq', "name_ku_sorani": 'ڕێواز فایەق', "governorate": 'erbil', "influence_score": 90}
        )
    assert sent_message(mock_smtp)['Subject'].startswith('🔥 PRIORITY')


def test_other_candidate_alert_subject():
    with ExitStack() as stack:
        mock_smtp = email_configured(stack)
        NotificationService().send_trending_alert({"name": 'Basra Candidate', "governorate": 'basra'})
    assert sent_message(mock_smtp)['Subject'].startswith('🔥 Trending Candidate Alert')


def test_trending_alerts_once_per_day(repo):
    now = datetime.now(timezone.utc)
    hot = repo.upsert_candidate({"name": 'Hot Candidate', "governorate": 'erbil'})
    cool = repo.upsert_candidate({"name": 'Cool Candidate', "governorate": 'erbil'})
    repo.update_candidate_influence(hot['id'], 95, last_activity=now)
    repo.update_candidate_influence(cool['id'], 40, last_activity=now)
    service = NotificationService()

    with patch.object(service, 'send_trending_alert', return_value=True) as mock_alert:
        assert service.check_for_trending_candidates() == [hot['id']]
        assert service.check_for_trending_candidates() == []
    mock_alert.assert_called_once()


def test_failed_trending_alert_is_retried(repo):
    hot = repo.upsert_candidate({"name": 'Hot Candidate', "governorate": 'erbil'})
    repo.update_candidate_influence(hot['id'], 95, last_activity=datetime.now(timezone.utc))
    service = NotificationService()

    with patch.object(service, 'send_trending_alert', return_value=False) as mock_alert:
        assert service.check_for_trending_candidates() == []
        assert service.check_for_trending_candidates() == []
    assert mock_alert.call_count == 2
    assert hot['id'] not in service._alerted

    with patch.object(service, 'send_trending_alert', return_value=True):
        assert service.check_for_trending_candidates() == [hot['id']]


def test_stale_candidate_is_not_alerted(repo):
    hot = repo.upsert_candidate({"name": 'Hot Candidate', "governorate": 'erbil'})
    repo.update_candidate_influence(hot['id'], 95, last_activity=datetime.now(timezone.utc) - timedelta(hours=3))
    service = NotificationService()

    with patch.object(service, 'send_trending_alert', return_value=True) as mock_alert:
        assert service.check_for_trending_candidates() == []
    mock_alert.assert_not_called()


def test_daily_digest_body():
    metrics = {
        "total_mentions": 200,
        "kurdistan_mentions": 50,
        "overall_sentiment": 0.12,
        "sentiment_trend": 'up',
        "top_candidates": [{"name": 'Rewaz Faiq', "region": 'erbil', "influence_score": 77}]
    }
    with patch.object(module, 'send_email', return_value=True) as mock_send:
        assert NotificationService().send_daily_digest(metrics)
    subject, body = mock_send.call_args.args
    assert 'Daily Digest' in subject
    assert 'Kurdistan Ratio: 25.0%' in body
    assert '📈 Improving' in body
    assert '#1: Rewaz Faiq (erbil) - Score: 77' in body


def test_health_alert_only_when_idle(repo, make_mention):
    service = NotificationService()
    with patch.object(module, 'send_email', return_value=True) as mock_send:
        assert service.check_system_health()
        repo.upsert_mention(make_mention())
        assert not service.check_system_health()
    mock_send.assert_called_once()


if __name__ == '__main__':
    unittest.main()
