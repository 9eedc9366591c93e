"""Transactional email through the Resend HTTP API."""
import logging

import requests
from flask import current_app

logger = logging.getLogger(__name__)

RESEND_API_URL = 'https://api.resend.com/emails'


def send_email(to, subject, html):
    """
    Send one email. Returns True when the provider accepted it.
    Delivery problems are logged and reported as False; callers never fail on them.
    """
    if not current_app.config.get('MAIL_ENABLED') or not current_app.config.get('RESEND_API_KEY'):
        logger.info('[EMAIL_SKIPPED] to=%s subject=%r (mail disabled)', to, subject)
        return False

    try:
        response = requests.post(
            RESEND_API_URL,
            json={
                'from': current_app.config['EMAIL_FROM'],
                'to': [to],
                'subject': subject,
                'html': html,
            },
            headers={'Authorization': f"Bearer {current_app.config['RESEND_API_KEY']}"},
            timeout=10
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error('[EMAIL_FAILED] to=%s subject=%r error=%s', to, subject, e)
        return False

    logger.info('[EMAIL_SENT] to=%s subject=%r', to, subject)
    return True


def send_verification_email(user, raw_token):
    link = f"{current_app.config['APP_URL']}/verify-email?token={raw_token}"
    html = (
        f'<p>Hi {user.name},</p>'
        f'<p>Please confirm your email address by opening the link below:</p>'
        f'<p><a href="{link}">{link}</a></p>'
        f'<p>The link is valid for {current_app.config["EMAIL_VERIFICATION_TTL_HOURS"]} hours.</p>'
    )
    return send_email(user.email, 'Verify your email address', html)


def send_password_reset_email(user, raw_token):
    link = f"{current_app.config['APP_URL']}/reset-password?token={raw_token}"
    html = (
        f'<p>Hi {user.name},</p>'
        f'<p>We received a request to reset your password. Open the link below to choose a new one:</p>'
        f'<p><a href="{link}">{link}</a></p>'
        f'<p>The link expires in {current_app.config["PASSWORD_RESET_TTL_HOURS"]} hour(s). '
        f'If you did not ask for this, you can ignore this email.</p>'
    )
    return send_email(user.email, 'Reset your password', html)


def send_booking_confirmation(booking):
    schedule = booking.schedule
    route = schedule.route
    rows = ''.join(
        f'<li>{t.passenger.name} - seat {t.passenger.seat_number or "-"} - {t.ticket_code}</li>'
        for t in booking.tickets
    )
    html = (
        f'<p>Hi {booking.user.name},</p>'
        f'<p>Your booking <strong>{booking.booking_code}</strong> is confirmed.</p>'
        f'<p>{route.departure_port.name} to {route.arrival_port.name}, '
        f'departing {schedule.departure_time:%d %b %Y %H:%M} UTC.</p>'
        f'<ul>{rows}</ul>'
    )
    return send_email(booking.user.email, f'Booking confirmed: {booking.booking_code}', html)


def _trip_line(booking):
    schedule = booking.schedule
    route = schedule.route
    return (f'{route.departure_port.name} to {route.arrival_port.name}, '
            f'departing {schedule.departure_time:%d %b %Y %H:%M} UTC')


def send_payment_pending(booking):
    """The card payment was captured but is held for review by the provider"""
    html = (
        f'<p>Hi {booking.user.name},</p>'
        f'<p>Your payment for booking <strong>{booking.booking_code}</strong> was received and is '
        f'being reviewed by our payment provider. Your seats stay reserved until the review finishes.</p>'
        f'<p>{_trip_line(booking)}.</p>'
        f'<p>We will email your tickets as soon as the payment is approved.</p>'
    )
    return send_email(booking.user.email, f'Payment under review: {booking.booking_code}', html)


def send_payment_failed(booking):
    payment = booking.payment
    html = (
        f'<p>Hi {booking.user.name},</p>'
        f'<p>The payment for booking <strong>{booking.booking_code}</strong> did not go through '
        f'({payment.status.value}). The booking has been released.</p>'
        f'<p>{_trip_line(booking)}.</p>'
        f'<p>You can book again at <a href="{current_app.config["APP_URL"]}">'
        f'{current_app.config["APP_URL"]}</a>.</p>'
    )
    return send_email(booking.user.email, f'Payment failed: {booking.booking_code}', html)


def send_payment_refunded(booking):
    payment = booking.payment
    html = (
        f'<p>Hi {booking.user.name},</p>'
        f'<p>Booking <strong>{booking.booking_code}</strong> has been refunded '
        f'(IDR {payment.refund_amount or payment.amount:,}). Its tickets are no longer valid.</p>'
    )
    return send_email(booking.user.email, f'Refund processed: {booking.booking_code}', html)


def send_account_locked(user, locked_until):
    html = (
        f'<p>Hi {user.name},</p>'
        f'<p>Your account was locked after too many failed sign-in attempts. '
        f'You can try again after {locked_until:%d %b %Y %H:%M} UTC.</p>'
        f'<p>If this was not you, reset your password at '
        f'<a href="{current_app.config["APP_URL"]}/forgot-password">'
        f'{current_app.config["APP_URL"]}/forgot-password</a>.</p>'
    )
    return send_email(user.email, 'Security alert: account locked', html)
