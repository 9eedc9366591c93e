import re
from datetime import datetime
from speedboat.models.booking import IdentityType, PassengerCategory


def validate_email(email):
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def validate_password(password):
    """
    Validate password strength:
    - At least 8 characters
    - Contains at least one uppercase letter
    - Contains at least one lowercase letter
    - Contains at least one digit
    """
    if len(password) < 8:
        return False, "Password must be at least 8 characters long"

    if not re.search(r'[A-Z]', password):
        return False, "Password must contain at least one uppercase letter"

    if not re.search(r'[a-z]', password):
        return False, "Password must contain at least one lowercase letter"

    if not re.search(r'\d', password):
        return False, "Password must contain at least one digit"

    return True, "Password is valid"


def validate_name(name):
    """Names are 2-100 characters"""
    if not isinstance(name, str) or len(name.strip()) < 2:
        return False, "Name must be at least 2 characters"
    if len(name.strip()) > 100:
        return False, "Name must be at most 100 characters"
    return True, "Name is valid"


def validate_phone_number(phone):
    """
    Validate an Indonesian phone number:
    - starts with +62, 62 or 0
    - followed by 9-12 digits
    """
    digits = re.sub(r'[\s\-]', '', phone)
    if not re.match(r'^(\+62|62|0)[0-9]{9,12}$', digits):
        return False, "Invalid phone number format"
    return True, "Phone number is valid"


def validate_required_fields(data, required_fields):
    """Validate that all required fields are present"""
    if not data:
        return False, f"Missing required fields: {', '.join(required_fields)}"

    missing_fields = [field for field in required_fields if field not in data or data[field] in (None, '')]

    if missing_fields:
        return False, f"Missing required fields: {', '.join(missing_fields)}"

    return True, "All required fields present"


def parse_enum(enum_cls, value):
    """Look up an enum member by value or name, case-insensitively. Returns None if no match."""
    if value is None:
        return None
    text = str(value).strip().lower()
    for member in enum_cls:
        if member.value == text or member.name.lower() == text:
            return member
    return None


def validate_passenger(passenger):
    """
    Validate one passenger entry:
    - name: 2-100 characters
    - identity_type: national_id, passport or drivers_license
    - identity_number: 5-30 letters and digits
    - phone: optional Indonesian number
    - category: adult (default), elderly, child or infant
    """
    if not isinstance(passenger, dict):
        return False, "Passenger must be an object"

    is_valid, message = validate_name(passenger.get('name') or '')
    if not is_valid:
        return False, f"Passenger {message[0].lower()}{message[1:]}"

    if parse_enum(IdentityType, passenger.get('identity_type')) is None:
        return False, "Invalid identity type"

    identity_number = str(passenger.get('identity_number') or '').strip()
    if not re.match(r'^[A-Za-z0-9]{5,30}$', identity_number):
        return False, "Identity number must be 5-30 letters or digits"

    phone = passenger.get('phone')
    if phone:
        is_valid, message = validate_phone_number(phone)
        if not is_valid:
            return False, message

    category = passenger.get('category')
    if category is not None and parse_enum(PassengerCategory, category) is None:
        return False, "Invalid passenger category"

    return True, "Passenger is valid"


def validate_passengers(passengers, max_passengers=10):
    """Validate the passenger list of a booking"""
    if not isinstance(passengers, list) or not passengers:
        return False, "At least one passenger is required"

    if len(passengers) > max_passengers:
        return False, f"Maximum {max_passengers} passengers per booking"

    for index, passenger in enumerate(passengers, start=1):
        is_valid, message = validate_passenger(passenger)
        if not is_valid:
            return False, f"Passenger {index}: {message}"

    categories = [parse_enum(PassengerCategory, p.get('category')) or PassengerCategory.ADULT
                  for p in passengers]
    if not any(c in (PassengerCategory.ADULT, PassengerCategory.ELDERLY) for c in categories):
        return False, "At least one adult or elderly passenger is required"

    return True, "Passengers are valid"


def parse_date(value):
    """Parse YYYY-MM-DD. Returns None on bad input."""
    try:
        return datetime.strptime(value, '%Y-%m-%d')
    except (TypeError, ValueError):
        return None


def parse_datetime(value):
    """Parse an ISO-8601 datetime into a naive UTC datetime. Returns None on bad input."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def parse_pagination(args, default_limit=20, max_limit=100):
    """Read limit/offset query parameters, clamped to sane bounds"""
    limit = args.get('limit', default_limit, type=int) or default_limit
    offset = args.get('offset', 0, type=int) or 0
    return max(1, min(limit, max_limit)), max(0, offset)
