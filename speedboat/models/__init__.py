from speedboat.models.user import User, UserRole, UserToken, TokenPurpose
from speedboat.models.schedule import (Port, Ship, Route, Schedule, ShipStatus,
                                       RouteStatus, ScheduleStatus)
from speedboat.models.booking import (Booking, Passenger, BookingStatus, IdentityType,
                                      PassengerCategory, CATEGORY_MULTIPLIERS)
from speedboat.models.payment import (Payment, PaymentStatus, PaymentAuditLog,
                                      IdempotencyRecord, WebhookAudit)
from speedboat.models.ticket import Ticket, TicketStatus

__all__ = ['User', 'UserRole', 'UserToken', 'TokenPurpose', 'Port', 'Ship', 'Route',
           'Schedule', 'ShipStatus', 'RouteStatus', 'ScheduleStatus', 'Booking', 'Passenger',
           'BookingStatus', 'IdentityType', 'PassengerCategory', 'CATEGORY_MULTIPLIERS',
           'Payment', 'PaymentStatus', 'PaymentAuditLog', 'IdempotencyRecord', 'WebhookAudit',
           'Ticket', 'TicketStatus']
