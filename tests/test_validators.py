import pytest
from datetime import datetime
from werkzeug.datastructures import ImmutableMultiDict
from speedboat.models.booking import IdentityType, PassengerCategory
from speedboat.utils.validators import (
    validate_email,
    validate_password,
    validate_name,
    validate_required_fields,
    validate_phone_number,
    validate_passenger,
    validate_passengers,
    parse_enum,
    parse_date,
    parse_datetime,
    parse_pagination
)


def _passenger(**overrides):
    passenger = {
        'name': 'Budi Santoso',
        'identity_type': 'national_id',
        'identity_number': '3171234567890001',
        'category': 'adult'
    }
    passenger.update(overrides)
    return passenger


class TestValidateEmail:
    def test_valid_email(self):
        assert validate_email('test@example.com') is True
        assert validate_email('user.name@domain.co.id') is True
        assert validate_email('user+tag@example.com') is True

    def test_invalid_email(self):
        assert validate_email('invalid-email') is False
        assert validate_email('@example.com') is False
        assert validate_email('user@') is False
        assert validate_email('user@domain') is False
        assert validate_email('') is False
        assert validate_email('user name@example.com') is False


class TestValidatePassword:
    def test_valid_password(self):
        is_valid, message = validate_password('TestPass123')
        assert is_valid is True

    def test_password_too_short(self):
        is_valid, message = validate_password('Short1A')
        assert is_valid is False
        assert 'at least 8 characters' in message.lower()

    def test_password_no_uppercase(self):
        is_valid, message = validate_password('testpass123')
        assert is_valid is False
        assert 'uppercase' in message.lower()

    def test_password_no_lowercase(self):
        is_valid, message = validate_password('TESTPASS123')
        assert is_valid is False
        assert 'lowercase' in message.lower()

    def test_password_no_digit(self):
        is_valid, message = validate_password('TestPassword')
        assert is_valid is False
        assert 'digit' in message.lower()


class TestValidateName:
    def test_valid_name(self):
        is_valid, message = validate_name('Siti')
        assert is_valid is True

    def test_name_too_short(self):
        is_valid, message = validate_name(' a ')
        assert is_valid is False

    def test_name_too_long(self):
        is_valid, message = validate_name('a' * 101)
        assert is_valid is False
        assert 'at most 100' in message


class TestValidatePhoneNumber:
    def test_valid_phone(self):
        assert validate_phone_number('081234567890')[0] is True
        assert validate_phone_number('+6281234567890')[0] is True
        assert validate_phone_number('0812-3456-7890')[0] is True

    def test_invalid_phone(self):
        assert validate_phone_number('12345')[0] is False
        assert validate_phone_number('+1 555 0100')[0] is False


class TestValidateRequiredFields:
    def test_all_present(self):
        is_valid, message = validate_required_fields({'email': 'a@b.co', 'name': 'A'}, ['email', 'name'])
        assert is_valid is True

    def test_missing_and_empty(self):
        is_valid, message = validate_required_fields({'email': '', 'phone': '1'}, ['email', 'name'])
        assert is_valid is False
        assert 'email' in message
        assert 'name' in message

    def test_no_data(self):
        is_valid, message = validate_required_fields(None, ['email'])
        assert is_valid is False


class TestValidatePassengers:
    def test_valid_passenger(self):
        is_valid, message = validate_passenger(_passenger(phone='081234567890'))
        assert is_valid is True

    def test_bad_identity_type(self):
        is_valid, message = validate_passenger(_passenger(identity_type='library_card'))
        assert is_valid is False
        assert 'identity type' in message

    def test_bad_identity_number(self):
        is_valid, message = validate_passenger(_passenger(identity_number='12 34'))
        assert is_valid is False

    def test_bad_category(self):
        is_valid, message = validate_passenger(_passenger(category='pet'))
        assert is_valid is False

    def test_category_defaults_to_adult(self):
        passenger = _passenger()
        del passenger['category']
        is_valid, message = validate_passengers([passenger])
        assert is_valid is True

    def test_empty_list(self):
        is_valid, message = validate_passengers([])
        assert is_valid is False

    def test_too_many(self):
        is_valid, message = validate_passengers([_passenger()] * 3, max_passengers=2)
        assert is_valid is False
        assert 'Maximum 2' in message

    def test_error_names_the_passenger(self):
        is_valid, message = validate_passengers([_passenger(), _passenger(name='X')])
        assert is_valid is False
        assert message.startswith('Passenger 2:')

    def test_children_need_an_adult(self):
        is_valid, message = validate_passengers([_passenger(category='child'), _passenger(category='infant')])
        assert is_valid is False
        assert 'adult or elderly' in message

    def test_elderly_can_accompany(self):
        is_valid, message = validate_passengers([_passenger(category='elderly'), _passenger(category='child')])
        assert is_valid is True


class TestParsers:
    def test_parse_enum(self):
        assert parse_enum(IdentityType, 'passport') is IdentityType.PASSPORT
        assert parse_enum(IdentityType, 'DRIVERS_LICENSE') is IdentityType.DRIVERS_LICENSE
        assert parse_enum(PassengerCategory, ' Child ') is PassengerCategory.CHILD
        assert parse_enum(PassengerCategory, 'pet') is None
        assert parse_enum(PassengerCategory, None) is None

    def test_parse_date(self):
        assert parse_date('2026-01-10') == datetime(2026, 1, 10)
        assert parse_date('10/01/2026') is None
        assert parse_date(None) is None

    def test_parse_datetime_converts_to_utc(self):
        assert parse_datetime('2026-01-10T08:00:00+08:00') == datetime(2026, 1, 10, 0, 0)
        assert parse_datetime('2026-01-10T08:00:00Z') == datetime(2026, 1, 10, 8, 0)
        assert parse_datetime('2026-01-10T08:00:00') == datetime(2026, 1, 10, 8, 0)

    def test_parse_datetime_rejects_garbage(self):
        assert parse_datetime('tomorrow') is None
        assert parse_datetime('') is None
        assert parse_datetime(12345) is None

    @pytest.mark.parametrize('args,expected', [
        ({}, (20, 0)),
        ({'limit': '5', 'offset': '10'}, (5, 10)),
        ({'limit': '1000'}, (100, 0)),
        ({'limit': '-3', 'offset': '-1'}, (1, 0)),
        ({'limit': 'abc'}, (20, 0)),
    ])
    def test_parse_pagination(self, args, expected):
        assert parse_pagination(ImmutableMultiDict(args)) == expected
