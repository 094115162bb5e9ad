"""Fleet administration app.

This Flask application is the staff back office of a car management
business.  Clients hand their cars over to be rented out; staff keep track
of the clients, their cars, onboarding submissions, banking details and
contracts, and maintain a month-by-month income and expense ledger for
every car.  The ledger drives the monthly management/owner split, the
negative balance carried between months and the payouts owed to owners
(see ``earnings.py``).

Every page has a JSON counterpart under ``/api`` that answers with a
``{"success": ..., "data": ...}`` envelope.

To run the app locally:

    pip install -e .

    # Initialise the database
    python fleet_admin.py --init-db

    # Start the development server
    python fleet_admin.py

Settings are read from the environment (or a ``.env`` file):
``FLEET_ADMIN_SECRET_KEY``, ``FLEET_ADMIN_DATABASE_URI``,
``FLEET_ADMIN_LOG_LEVEL`` and ``FLEET_ADMIN_CARRY_OVER_PREVIOUS_YEAR_MODES``.

Contracts and onboarding documents are stored as file names only; the
files themselves live elsewhere.
"""

import argparse
import os
import uuid
from collections import defaultdict
from datetime import datetime, date

from dotenv import load_dotenv
from flask import (Flask, Response, flash, jsonify, redirect, render_template,
                   request, url_for)
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

import earnings
import income_export

load_dotenv()

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('FLEET_ADMIN_SECRET_KEY', 'change-me')
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('FLEET_ADMIN_DATABASE_URI', 'sqlite:///fleet_admin.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['LOG_LEVEL'] = os.environ.get('FLEET_ADMIN_LOG_LEVEL', 'INFO')
app.config['CARRY_OVER_PREVIOUS_YEAR_MODES'] = os.environ.get(
    'FLEET_ADMIN_CARRY_OVER_PREVIOUS_YEAR_MODES', earnings.PREVIOUS_YEAR_MODES_DEFAULT)
app.logger.setLevel(app.config['LOG_LEVEL'])

db = SQLAlchemy(app)

CAR_STATUSES = ('available', 'rented', 'maintenance', 'returned')
ACCESS_STATUSES = ('active', 'revoked', 'blocked')
CONTRACT_STATUSES = ('pending', 'signed', 'declined')
PAYMENT_STATUSES = ('unpaid', 'partial', 'paid')
TAX_CLASSIFICATIONS = ('individual', 'sole_proprietor', 'llc', 'corporation', 'partnership')
VIN_LENGTH = 17


class ValidationError(Exception):
    """Submitted data failed validation; the message is shown to the user."""


def _iso(value):
    return value.isoformat() if value else None


class Client(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(160), unique=True, nullable=False)
    phone = db.Column(db.String(50))
    # Bank fields captured at sign-up; BankingInfo holds the managed records.
    bank_name = db.Column(db.String(120))
    bank_routing_number = db.Column(db.String(20))
    bank_account_number = db.Column(db.String(34))
    is_active = db.Column(db.Boolean, default=True)
    access_status = db.Column(db.String(20), default='active')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_login_at = db.Column(db.DateTime, nullable=True)

    cars = db.relationship('Car', back_populates='client')
    onboardings = db.relationship('OnboardingSubmission', back_populates='client',
                                  cascade='all, delete-orphan',
                                  order_by='OnboardingSubmission.submitted_at.desc()')
    contracts = db.relationship('Contract', back_populates='client', cascade='all, delete-orphan')
    banking_infos = db.relationship('BankingInfo', back_populates='client', cascade='all, delete-orphan')
    payments = db.relationship('Payment', back_populates='client')

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def car_count(self) -> int:
        return len(self.cars)

    def to_dict(self, include_cars=False):
        data = {
            'id': self.id,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'email': self.email,
            'phone': self.phone,
            'bankName': self.bank_name,
            'bankRoutingNumber': self.bank_routing_number,
            'bankAccountNumber': self.bank_account_number,
            'isActive': bool(self.is_active),
            'accessStatus': self.access_status,
            'createdAt': _iso(self.created_at),
            'lastLoginAt': _iso(self.last_login_at),
            'carCount': self.car_count,
        }
        if include_cars:
            data['cars'] = [car.to_dict() for car in self.cars]
            data['contracts'] = [c.to_dict() for c in self.contracts]
        return data

    def __repr__(self) -> str:
        return f"<Client {self.full_name}>"


class Car(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=True)
    vin = db.Column(db.String(VIN_LENGTH), unique=True, nullable=False)
    make = db.Column(db.String(80))
    model = db.Column(db.String(80))
    year = db.Column(db.Integer)
    license_plate = db.Column(db.String(20))
    mileage = db.Column(db.Integer, default=0)
    status = db.Column(db.String(20), default='available')
    fuel_type = db.Column(db.String(40))
    tire_size = db.Column(db.String(40))
    oil_type = db.Column(db.String(40))
    last_oil_change = db.Column(db.Date, nullable=True)
    registration_expiration = db.Column(db.Date, nullable=True)
    turo_link = db.Column(db.String(255))
    admin_turo_link = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    client = db.relationship('Client', back_populates='cars')
    entries = db.relationship('IncomeExpenseEntry', back_populates='car', cascade='all, delete-orphan')
    formula_settings = db.relationship('FormulaSetting', back_populates='car', cascade='all, delete-orphan')
    subcategories = db.relationship('DynamicSubcategory', back_populates='car', cascade='all, delete-orphan')
    payments = db.relationship('Payment', back_populates='car', cascade='all, delete-orphan')
    # Contracts and bank records outlive the car; their car_id is cleared.
    contracts = db.relationship('Contract', back_populates='car')
    banking_infos = db.relationship('BankingInfo', back_populates='car')

    @property
    def make_model(self) -> str:
        return " ".join(part for part in (self.make, self.model) if part)

    def to_dict(self):
        return {
            'id': self.id,
            'clientId': self.client_id,
            'vin': self.vin,
            'make': self.make,
            'model': self.model,
            'makeModel': self.make_model,
            'year': self.year,
            'licensePlate': self.license_plate,
            'mileage': self.mileage,
            'status': self.status,
            'fuelType': self.fuel_type,
            'tireSize': self.tire_size,
            'oilType': self.oil_type,
            'lastOilChange': _iso(self.last_oil_change),
            'registrationExpiration': _iso(self.registration_expiration),
            'turoLink': self.turo_link,
            'adminTuroLink': self.admin_turo_link,
            'createdAt': _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Car {self.vin}>"


# ---------------------------------------------------------------------------
# Onboarding submissions carry everything captured at intake.  The column
# list doubles as the mapping between wire names and attributes.
ONBOARDING_FIELDS = [
    ('firstName', 'first_name', 'str'),
    ('lastName', 'last_name', 'str'),
    ('email', 'email', 'str'),
    ('phone', 'phone', 'str'),
    ('dateOfBirth', 'date_of_birth', 'date'),
    ('streetAddress', 'street_address', 'str'),
    ('city', 'city', 'str'),
    ('state', 'state', 'str'),
    ('zipCode', 'zip_code', 'str'),
    ('vin', 'vin', 'vin'),
    ('vehicleMake', 'vehicle_make', 'str'),
    ('vehicleModel', 'vehicle_model', 'str'),
    ('vehicleYear', 'vehicle_year', 'int'),
    ('vehicleTrim', 'vehicle_trim', 'str'),
    ('mileage', 'mileage', 'int'),
    ('exteriorColor', 'exterior_color', 'str'),
    ('interiorColor', 'interior_color', 'str'),
    ('licensePlate', 'license_plate', 'str'),
    ('titleType', 'title_type', 'str'),
    ('fuelType', 'fuel_type', 'str'),
    ('tireSize', 'tire_size', 'str'),
    ('oilType', 'oil_type', 'str'),
    ('purchasePrice', 'purchase_price', 'float'),
    ('loanBalance', 'loan_balance', 'float'),
    ('monthlyPayment', 'monthly_payment', 'float'),
    ('bankName', 'bank_name', 'str'),
    ('routingNumber', 'routing_number', 'str'),
    ('accountNumber', 'account_number', 'str'),
    ('insuranceProvider', 'insurance_provider', 'str'),
    ('insurancePolicyNumber', 'insurance_policy_number', 'str'),
    ('insuranceExpiration', 'insurance_expiration', 'date'),
    ('registrationFile', 'registration_file', 'str'),
    ('insuranceCardFile', 'insurance_card_file', 'str'),
    ('notes', 'notes', 'str'),
]


class OnboardingSubmission(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False)
    first_name = db.Column(db.String(80))
    last_name = db.Column(db.String(80))
    email = db.Column(db.String(160))
    phone = db.Column(db.String(50))
    date_of_birth = db.Column(db.Date)
    street_address = db.Column(db.String(200))
    city = db.Column(db.String(80))
    state = db.Column(db.String(40))
    zip_code = db.Column(db.String(20))
    vin = db.Column(db.String(VIN_LENGTH), index=True)
    vehicle_make = db.Column(db.String(80))
    vehicle_model = db.Column(db.String(80))
    vehicle_year = db.Column(db.Integer)
    vehicle_trim = db.Column(db.String(80))
    mileage = db.Column(db.Integer)
    exterior_color = db.Column(db.String(40))
    interior_color = db.Column(db.String(40))
    license_plate = db.Column(db.String(20))
    title_type = db.Column(db.String(40))
    fuel_type = db.Column(db.String(40))
    tire_size = db.Column(db.String(40))
    oil_type = db.Column(db.String(40))
    purchase_price = db.Column(db.Float)
    loan_balance = db.Column(db.Float)
    monthly_payment = db.Column(db.Float)
    bank_name = db.Column(db.String(120))
    routing_number = db.Column(db.String(20))
    account_number = db.Column(db.String(34))
    insurance_provider = db.Column(db.String(120))
    insurance_policy_number = db.Column(db.String(80))
    insurance_expiration = db.Column(db.Date)
    registration_file = db.Column(db.String(200))
    insurance_card_file = db.Column(db.String(200))
    notes = db.Column(db.Text)
    status = db.Column(db.String(20), default='submitted')
    contract_signed_at = db.Column(db.DateTime, nullable=True)
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow)

    client = db.relationship('Client', back_populates='onboardings')

    def to_dict(self):
        data = {'id': self.id, 'clientId': self.client_id, 'status': self.status,
                'contractSignedAt': _iso(self.contract_signed_at),
                'submittedAt': _iso(self.submitted_at)}
        for key, attr, kind in ONBOARDING_FIELDS:
            value = getattr(self, attr)
            data[key] = _iso(value) if kind == 'date' else value
        return data

    def __repr__(self) -> str:
        return f"<OnboardingSubmission client={self.client_id} vin={self.vin}>"


class BankingInfo(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=True)
    bank_name = db.Column(db.String(120), nullable=False)
    routing_number = db.Column(db.String(20), nullable=False)
    account_number = db.Column(db.String(34), nullable=False)
    tax_classification = db.Column(db.String(40))
    ssn = db.Column(db.String(11))
    ein = db.Column(db.String(10))
    business_name = db.Column(db.String(160))
    is_default = db.Column(db.Boolean, default=False)

    client = db.relationship('Client', back_populates='banking_infos')
    car = db.relationship('Car', back_populates='banking_infos')

    def to_dict(self):
        return {
            'id': self.id,
            'clientId': self.client_id,
            'carId': self.car_id,
            'bankName': self.bank_name,
            'routingNumber': self.routing_number,
            'accountNumber': self.account_number,
            'taxClassification': self.tax_classification,
            'ssn': self.ssn,
            'ein': self.ein,
            'businessName': self.business_name,
            'isDefault': bool(self.is_default),
        }

    def __repr__(self) -> str:
        return f"<BankingInfo {self.bank_name} default={self.is_default}>"


class Contract(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=False)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=True)
    title = db.Column(db.String(160), nullable=False)
    file_name = db.Column(db.String(200))  # name of the signed PDF, stored elsewhere
    status = db.Column(db.String(20), default='pending')
    token = db.Column(db.String(64), default=lambda: uuid.uuid4().hex)
    sent_at = db.Column(db.DateTime, default=datetime.utcnow)
    signed_at = db.Column(db.DateTime, nullable=True)
    resend_count = db.Column(db.Integer, default=0)

    client = db.relationship('Client', back_populates='contracts')
    car = db.relationship('Car', back_populates='contracts')

    def to_dict(self):
        return {
            'id': self.id,
            'clientId': self.client_id,
            'carId': self.car_id,
            'title': self.title,
            'fileName': self.file_name,
            'status': self.status,
            'token': self.token,
            'sentAt': _iso(self.sent_at),
            'signedAt': _iso(self.signed_at),
            'resendCount': self.resend_count or 0,
        }

    def __repr__(self) -> str:
        return f"<Contract {self.title} {self.status}>"


# ---------------------------------------------------------------------------
# Income and expense ledger.  One row per (car, year, category, field,
# month); the split mode and ski rack owner of each month live in
# FormulaSetting.

class IncomeExpenseEntry(db.Model):
    __table_args__ = (db.UniqueConstraint('car_id', 'year', 'category', 'field', 'month'),)

    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(40), nullable=False)
    field = db.Column(db.String(60), nullable=False)
    value = db.Column(db.Float, default=0.0)

    car = db.relationship('Car', back_populates='entries')

    def __repr__(self) -> str:
        return f"<IncomeExpenseEntry {self.year}-{self.month:02d} {self.category}.{self.field}={self.value}>"


class FormulaSetting(db.Model):
    __table_args__ = (db.UniqueConstraint('car_id', 'year', 'month'),)

    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    mode = db.Column(db.Integer, default=earnings.MODE_50)
    ski_racks_owner = db.Column(db.String(20), default=earnings.SKI_RACKS_GLA)
    management_split = db.Column(db.Float, nullable=True)
    owner_split = db.Column(db.Float, nullable=True)

    car = db.relationship('Car', back_populates='formula_settings')

    def to_setting(self):
        return earnings.MonthSetting(mode=self.mode, ski_racks_owner=self.ski_racks_owner,
                                     management_split=self.management_split,
                                     owner_split=self.owner_split)


class DynamicSubcategory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(40), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    display_order = db.Column(db.Integer, default=0)

    car = db.relationship('Car', back_populates='subcategories')
    values = db.relationship('DynamicSubcategoryValue', back_populates='subcategory',
                             cascade='all, delete-orphan')

    def value_map(self):
        return {v.month: v.value or 0.0 for v in self.values}

    def to_dict(self):
        values = self.value_map()
        return {
            'id': self.id,
            'category': self.category,
            'name': self.name,
            'displayOrder': self.display_order,
            'values': [{'month': m, 'value': values.get(m, 0.0)} for m in earnings.MONTH_NUMBERS],
        }


class DynamicSubcategoryValue(db.Model):
    __table_args__ = (db.UniqueConstraint('subcategory_id', 'month'),)

    id = db.Column(db.Integer, primary_key=True)
    subcategory_id = db.Column(db.Integer, db.ForeignKey('dynamic_subcategory.id'), nullable=False)
    month = db.Column(db.Integer, nullable=False)
    value = db.Column(db.Float, default=0.0)

    subcategory = db.relationship('DynamicSubcategory', back_populates='values')


class Payment(db.Model):
    """Monthly payout to a car owner."""
    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey('car.id'), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey('client.id'), nullable=True)
    year_month = db.Column(db.String(7), nullable=False)  # YYYY-MM
    status = db.Column(db.String(20), default='unpaid')
    payable = db.Column(db.Float, default=0.0)
    payout = db.Column(db.Float, default=0.0)
    balance = db.Column(db.Float, default=0.0)
    reference_number = db.Column(db.String(80))
    invoice_date = db.Column(db.Date, nullable=True)
    remarks = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    car = db.relationship('Car', back_populates='payments')
    client = db.relationship('Client', back_populates='payments')

    def to_dict(self):
        return {
            'id': self.id,
            'carId': self.car_id,
            'clientId': self.client_id,
            'yearMonth': self.year_month,
            'status': self.status,
            'payable': self.payable,
            'payout': self.payout,
            'balance': self.balance,
            'referenceNumber': self.reference_number,
            'invoiceDate': _iso(self.invoice_date),
            'remarks': self.remarks,
        }

    def __repr__(self) -> str:
        return f"<Payment {self.year_month} payable={self.payable}>"


# ---------------------------------------------------------------------------
# Parsing helpers.  Form posts and JSON bodies use the same camelCase keys,
# so each helper accepts whatever mapping the request carried.

def request_data():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form


def parse_str(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_float(value, label, required=False):
    if value is None or str(value).strip() == '':
        if required:
            raise ValidationError(f"{label} is required")
        return None
    try:
        return float(str(value).replace(',', '').replace('$', '').strip())
    except ValueError:
        raise ValidationError(f"{label} must be a number")


def parse_int(value, label, required=False):
    if value is None or str(value).strip() == '':
        if required:
            raise ValidationError(f"{label} is required")
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{label} must be a whole number")


def parse_date(value, label):
    """Accept ISO dates from date inputs and DD/MM/YYYY typed by hand."""
    if value is None or str(value).strip() == '':
        return None
    value = str(value).strip()
    for fmt in ('%Y-%m-%d', '%d/%m/%Y'):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValidationError(f"{label} must be a date (YYYY-MM-DD)")


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'on', 'yes')


def validate_vin(value) -> str:
    vin = (parse_str(value) or '').upper()
    if len(vin) != VIN_LENGTH:
        raise ValidationError(f"VIN must be {VIN_LENGTH} characters")
    return vin


def validate_year(value) -> int:
    year = parse_int(value, 'Year', required=True)
    if year < earnings.FIRST_LEDGER_YEAR:
        raise ValidationError(f"Year must be {earnings.FIRST_LEDGER_YEAR} or later")
    return year


def validate_month(value) -> int:
    month = parse_int(value, 'Month', required=True)
    if month not in earnings.MONTH_NUMBERS:
        raise ValidationError("Month must be between 1 and 12")
    return month


def validate_choice(value, choices, label):
    if value not in choices:
        raise ValidationError(f"{label} must be one of: {', '.join(str(c) for c in choices)}")
    return value


def parse_year_month(value):
    """Split ``YYYY-MM`` into (year, month)."""
    text = parse_str(value) or ''
    parts = text.split('-')
    if len(parts) != 2:
        raise ValidationError("Year/month must look like YYYY-MM")
    return validate_year(parts[0]), validate_month(parts[1])


def api_ok(data=None, status=200):
    return jsonify(success=True, data=data), status


# ---------------------------------------------------------------------------
# Record updates shared by the HTML forms and the JSON API.  Values are
# validated before any attribute is touched so a failed edit never leaves a
# half-updated row in the session.

def apply_client(client: Client, data):
    first_name = parse_str(data.get('firstName'))
    last_name = parse_str(data.get('lastName'))
    email = (parse_str(data.get('email')) or '').lower()
    if not first_name or not last_name:
        raise ValidationError("First and last name are required")
    if not email or '@' not in email:
        raise ValidationError("A valid email address is required")
    clash = Client.query.filter(Client.email == email, Client.id != client.id).first()
    if clash:
        raise ValidationError(f"Another client already uses {email}")
    client.first_name = first_name
    client.last_name = last_name
    client.email = email
    client.phone = parse_str(data.get('phone'))
    client.bank_name = parse_str(data.get('bankName'))
    client.bank_routing_number = parse_str(data.get('bankRoutingNumber'))
    client.bank_account_number = parse_str(data.get('bankAccountNumber'))
    if 'isActive' in data:
        client.is_active = parse_bool(data.get('isActive'))


def apply_car(car: Car, data):
    vin = validate_vin(data.get('vin'))
    clash = Car.query.filter(Car.vin == vin, Car.id != car.id).first()
    if clash:
        raise ValidationError(f"VIN {vin} is already registered")
    client_id = parse_int(data.get('clientId'), 'Client')
    if client_id is not None and Client.query.get(client_id) is None:
        raise ValidationError("Selected client does not exist")
    status = parse_str(data.get('status')) or 'available'
    validate_choice(status, CAR_STATUSES, 'Status')
    year = parse_int(data.get('year'), 'Year')
    mileage = parse_int(data.get('mileage'), 'Mileage')
    if mileage is not None and mileage < 0:
        raise ValidationError("Mileage cannot be negative")
    last_oil_change = parse_date(data.get('lastOilChange'), 'Last oil change')
    registration_expiration = parse_date(data.get('registrationExpiration'), 'Registration expiration')

    car.vin = vin
    car.client_id = client_id
    car.make = parse_str(data.get('make'))
    car.model = parse_str(data.get('model'))
    car.year = year
    car.license_plate = parse_str(data.get('licensePlate'))
    car.mileage = mileage or 0
    car.status = status
    car.fuel_type = parse_str(data.get('fuelType'))
    car.tire_size = parse_str(data.get('tireSize'))
    car.oil_type = parse_str(data.get('oilType'))
    car.last_oil_change = last_oil_change
    car.registration_expiration = registration_expiration
    car.turo_link = parse_str(data.get('turoLink'))
    car.admin_turo_link = parse_str(data.get('adminTuroLink'))


def apply_onboarding(submission: OnboardingSubmission, data):
    parsed = {}
    for key, attr, kind in ONBOARDING_FIELDS:
        raw = data.get(key)
        if kind == 'vin':
            parsed[attr] = validate_vin(raw) if parse_str(raw) else None
        elif kind == 'int':
            parsed[attr] = parse_int(raw, key)
        elif kind == 'float':
            parsed[attr] = parse_float(raw, key)
        elif kind == 'date':
            parsed[attr] = parse_date(raw, key)
        else:
            parsed[attr] = parse_str(raw)
    for attr, value in parsed.items():
        setattr(submission, attr, value)


def apply_banking_info(info: BankingInfo, data):
    bank_name = parse_str(data.get('bankName'))
    routing = parse_str(data.get('routingNumber'))
    account = parse_str(data.get('accountNumber'))
    if not bank_name or not routing or not account:
        raise ValidationError("Bank name, routing number and account number are required")
    if not routing.isdigit() or len(routing) != 9:
        raise ValidationError("Routing number must be 9 digits")
    if not account.isdigit():
        raise ValidationError("Account number must contain digits only")
    tax_classification = parse_str(data.get('taxClassification'))
    if tax_classification:
        validate_choice(tax_classification, TAX_CLASSIFICATIONS, 'Tax classification')
    car_id = parse_int(data.get('carId'), 'Car')
    if car_id is not None:
        car = Car.query.get(car_id)
        if car is None or car.client_id != info.client_id:
            raise ValidationError("Car does not belong to this client")

    info.bank_name = bank_name
    info.routing_number = routing
    info.account_number = account
    info.tax_classification = tax_classification
    info.ssn = parse_str(data.get('ssn'))
    info.ein = parse_str(data.get('ein'))
    info.business_name = parse_str(data.get('businessName'))
    info.car_id = car_id
    info.is_default = parse_bool(data.get('isDefault', False))


def ensure_single_default(info: BankingInfo):
    """Keep at most one default banking record per client.

    The first record a client gets is the default even when not flagged.
    """
    others = BankingInfo.query.filter(BankingInfo.client_id == info.client_id,
                                      BankingInfo.id != info.id).all()
    if info.is_default:
        for other in others:
            other.is_default = False
    elif not any(other.is_default for other in others):
        info.is_default = True


def apply_contract(contract: Contract, data):
    title = parse_str(data.get('title'))
    if not title:
        raise ValidationError("Contract title is required")
    car_id = parse_int(data.get('carId'), 'Car')
    if car_id is not None:
        car = Car.query.get(car_id)
        if car is None or car.client_id != contract.client_id:
            raise ValidationError("Car does not belong to this client")
    contract.title = title
    contract.car_id = car_id
    contract.file_name = parse_str(data.get('fileName'))


def set_client_access(client: Client, action: str):
    """Apply a block/revoke/reactivate action to a client's portal access."""
    if action == 'block':
        client.access_status, client.is_active = 'blocked', False
    elif action == 'revoke':
        client.access_status, client.is_active = 'revoked', False
    elif action == 'reactivate':
        client.access_status, client.is_active = 'active', True
    else:
        raise ValidationError(f"Unknown access action: {action}")
    app.logger.info("Client %s access set to %s", client.id, client.access_status)


# ---------------------------------------------------------------------------
# Ledger access

def load_ledger(car_id: int, year: int) -> earnings.YearLedger:
    """Read one car-year from the database into an engine ledger."""
    values = {(e.category, e.field, e.month): e.value
              for e in IncomeExpenseEntry.query.filter_by(car_id=car_id, year=year)}
    settings = {s.month: s.to_setting()
                for s in FormulaSetting.query.filter_by(car_id=car_id, year=year)}
    subcategories = defaultdict(list)
    query = (DynamicSubcategory.query.filter_by(car_id=car_id, year=year)
             .order_by(DynamicSubcategory.display_order.asc(), DynamicSubcategory.id.asc()))
    for sub in query:
        subcategories[sub.category].append({'name': sub.name, 'values': sub.value_map()})
    return earnings.YearLedger(year, values, settings, subcategories)


def build_calculator(car_id: int, year: int) -> earnings.EarningsCalculator:
    """Calculator for a car-year, with the previous year loaded for January."""
    return earnings.EarningsCalculator(
        load_ledger(car_id, year),
        previous=load_ledger(car_id, year - 1),
        previous_year_modes=app.config['CARRY_OVER_PREVIOUS_YEAR_MODES'],
    )


def set_entry(car_id: int, year: int, category: str, field: str, month: int, value):
    if category not in earnings.CATEGORY_FIELDS:
        raise ValidationError(f"Unknown category: {category}")
    if field not in earnings.category_field_names(category):
        raise ValidationError(f"Unknown field {field} in {category}")
    month = validate_month(month)
    amount = parse_float(value, field) or 0.0
    entry = IncomeExpenseEntry.query.filter_by(car_id=car_id, year=year, category=category,
                                               field=field, month=month).first()
    if entry is None:
        entry = IncomeExpenseEntry(car_id=car_id, year=year, category=category,
                                   field=field, month=month)
        db.session.add(entry)
    entry.value = amount
    return entry


def get_formula_setting(car_id: int, year: int, month: int) -> FormulaSetting:
    setting = FormulaSetting.query.filter_by(car_id=car_id, year=year, month=month).first()
    if setting is None:
        setting = FormulaSetting(car_id=car_id, year=year, month=month,
                                 mode=earnings.MODE_50, ski_racks_owner=earnings.SKI_RACKS_GLA)
        db.session.add(setting)
    return setting


def set_month_mode(car_id: int, year: int, month: int, mode=None) -> FormulaSetting:
    """Set (or toggle, when ``mode`` is None) a month's split mode.

    Switching mode resets the stored split percentages to the mode default.
    """
    setting = get_formula_setting(car_id, year, month)
    if mode is None:
        current = setting.mode or earnings.MODE_50
        mode = earnings.MODE_70 if current == earnings.MODE_50 else earnings.MODE_50
    validate_choice(mode, earnings.MODES, 'Mode')
    setting.mode = mode
    setting.management_split, setting.owner_split = earnings.default_split(mode)
    app.logger.info("Car %s %s-%02d switched to mode %s", car_id, year, month, mode)
    return setting


def set_month_splits(car_id: int, year: int, month: int, management, owner=None) -> FormulaSetting:
    mgmt = parse_float(management, 'Car management split', required=True)
    owner = parse_float(owner, 'Car owner split')
    if owner is None:
        owner = 100.0 - mgmt
    for label, pct in (('Car management split', mgmt), ('Car owner split', owner)):
        if pct < 0 or pct > 100:
            raise ValidationError(f"{label} must be between 0 and 100")
    if abs(mgmt + owner - 100.0) > 0.001:
        raise ValidationError("Split percentages must add up to 100")
    setting = get_formula_setting(car_id, year, month)
    setting.management_split = mgmt
    setting.owner_split = owner
    return setting


def add_subcategory(car_id: int, year: int, category: str, name: str) -> DynamicSubcategory:
    validate_choice(category, earnings.DYNAMIC_CATEGORIES, 'Category')
    name = parse_str(name)
    if not name:
        raise ValidationError("Subcategory name is required")
    last = (db.session.query(func.max(DynamicSubcategory.display_order))
            .filter(DynamicSubcategory.car_id == car_id, DynamicSubcategory.year == year,
                    DynamicSubcategory.category == category).scalar())
    sub = DynamicSubcategory(car_id=car_id, year=year, category=category, name=name,
                             display_order=(last or 0) + 1)
    db.session.add(sub)
    return sub


def set_subcategory_value(sub: DynamicSubcategory, month, value):
    month = validate_month(month)
    amount = parse_float(value, sub.name) or 0.0
    for existing in sub.values:
        if existing.month == month:
            existing.value = amount
            return existing
    entry = DynamicSubcategoryValue(month=month, value=amount)
    sub.values.append(entry)
    return entry


def ledger_payload(car: Car, year: int):
    calc = build_calculator(car.id, year)
    payload = calc.ledger.to_payload()
    subs = (DynamicSubcategory.query.filter_by(car_id=car.id, year=year)
            .order_by(DynamicSubcategory.display_order.asc(), DynamicSubcategory.id.asc()).all())
    payload['dynamicSubcategories'] = {
        category: [s.to_dict() for s in subs if s.category == category]
        for category in earnings.DYNAMIC_CATEGORIES
    }
    payload['carId'] = car.id
    payload['year'] = year
    payload['computed'] = calc.months()
    return payload


def client_totals(client: Client, car=None, year=None, from_year=None, to_year=None):
    """Aggregate the Totals tab for a client.

    ``car`` is a car id or ``all``.  ``year`` is a year, ``all`` (every year
    with ledger data, optionally bounded by ``from_year``/``to_year``) or
    empty, in which case the from/to range is used, falling back to the
    current year.
    """
    cars = list(client.cars)
    if car not in (None, '', 'all'):
        car_id = parse_int(car, 'Car')
        cars = [c for c in cars if c.id == car_id]
        if not cars:
            raise ValidationError("Car does not belong to this client")
    lower = parse_int(from_year, 'From year')
    upper = parse_int(to_year, 'To year')
    if lower is not None and upper is not None and lower > upper:
        raise ValidationError("From year must not be after to year")

    if year == 'all':
        car_ids = [c.id for c in cars]
        rows = []
        if car_ids:
            rows = (db.session.query(IncomeExpenseEntry.year)
                    .filter(IncomeExpenseEntry.car_id.in_(car_ids)).distinct().all())
        years = sorted(y for (y,) in rows
                       if (lower is None or y >= lower) and (upper is None or y <= upper))
    elif year in (None, ''):
        if lower is not None or upper is not None:
            start = lower if lower is not None else upper
            # No ledger exists past the current year.
            end = min(upper if upper is not None else lower, date.today().year)
            years = list(range(max(start, earnings.FIRST_LEDGER_YEAR), end + 1))
        else:
            years = [date.today().year]
    else:
        years = [validate_year(year)]

    calculators = [build_calculator(c.id, y) for c in cars for y in years]
    totals = earnings.summarize_totals(calculators)
    totals['years'] = years
    totals['carIds'] = [c.id for c in cars]
    return totals


def owner_payable(car_id: int, year_month: str) -> float:
    year, month = parse_year_month(year_month)
    return round(build_calculator(car_id, year).car_owner_split(month), 2)


def apply_payment(payment: Payment, data):
    year_month = parse_str(data.get('yearMonth'))
    parse_year_month(year_month)
    status = parse_str(data.get('status')) or 'unpaid'
    validate_choice(status, PAYMENT_STATUSES, 'Status')
    payout = parse_float(data.get('payout'), 'Payout') or 0.0
    invoice_date = parse_date(data.get('invoiceDate'), 'Invoice date')

    payment.year_month = year_month
    payment.status = status
    payment.payable = owner_payable(payment.car_id, year_month)
    payment.payout = payout
    payment.balance = round(payout - payment.payable, 2)
    payment.reference_number = parse_str(data.get('referenceNumber'))
    payment.invoice_date = invoice_date
    payment.remarks = parse_str(data.get('remarks'))


# ---------------------------------------------------------------------------
# Error handling.  API callers get the JSON envelope; pages flash the
# message and send the user back.

def _wants_json() -> bool:
    return request.path.startswith('/api/')


@app.errorhandler(ValidationError)
def handle_validation_error(error):
    db.session.rollback()
    app.logger.warning("Validation failed on %s: %s", request.path, error)
    if _wants_json():
        return jsonify(success=False, error=str(error)), 400
    flash(str(error))
    return redirect(request.referrer or url_for('index'))


@app.errorhandler(404)
def handle_not_found(error):
    if _wants_json():
        return jsonify(success=False, error='Not found'), 404
    return error


@app.errorhandler(SQLAlchemyError)
def handle_database_error(error):
    db.session.rollback()
    app.logger.exception("Database error on %s", request.path)
    if _wants_json():
        return jsonify(success=False, error='Database error, changes were not saved'), 500
    flash('Could not save changes. Please try again.')
    return redirect(url_for('index'))


# ---------------------------------------------------------------------------
# Dashboard

@app.route('/')
def index():
    """
    Dashboard home page: client and fleet counts, cars by status, contracts
    still waiting for a signature and owner payments not yet settled.
    """
    cars_by_status = dict(db.session.query(Car.status, func.count(Car.id)).group_by(Car.status).all())
    summary = {
        'total_clients': Client.query.count(),
        'active_clients': Client.query.filter_by(is_active=True).count(),
        'total_cars': Car.query.count(),
        'cars_by_status': {status: cars_by_status.get(status, 0) for status in CAR_STATUSES},
        'pending_contracts': Contract.query.filter_by(status='pending').count(),
        'unpaid_payments': Payment.query.filter(Payment.status != 'paid').count(),
        'unpaid_balance': db.session.query(func.sum(Payment.payable - Payment.payout))
                          .filter(Payment.status != 'paid').scalar() or 0.0,
    }
    recent_onboardings = (OnboardingSubmission.query
                          .order_by(OnboardingSubmission.submitted_at.desc()).limit(5).all())
    return render_template('index.html', summary=summary, recent_onboardings=recent_onboardings)


# ---------------------------------------------------------------------------
# Clients

def query_clients(search=None, status=None):
    query = Client.query
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Client.first_name.ilike(like), Client.last_name.ilike(like),
                                 Client.email.ilike(like), Client.phone.ilike(like)))
    if status == 'active':
        query = query.filter_by(is_active=True)
    elif status == 'inactive':
        query = query.filter_by(is_active=False)
    elif status in ACCESS_STATUSES:
        query = query.filter_by(access_status=status)
    return query.order_by(Client.last_name.asc(), Client.first_name.asc()).all()


@app.route('/clients')
def list_clients():
    search = request.args.get('q', '').strip()
    status = request.args.get('status', 'all')
    clients = query_clients(search, status)
    return render_template('clients.html', clients=clients, search=search, status=status)


@app.route('/clients/add', methods=['GET', 'POST'])
def add_client():
    if request.method == 'POST':
        client = Client()
        try:
            apply_client(client, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('client_form.html', client=None, form=request.form)
        db.session.add(client)
        db.session.commit()
        flash('Client added.')
        return redirect(url_for('client_detail', client_id=client.id))
    return render_template('client_form.html', client=None, form={})


@app.route('/clients/edit/<int:client_id>', methods=['GET', 'POST'])
def edit_client(client_id: int):
    client = Client.query.get_or_404(client_id)
    if request.method == 'POST':
        try:
            apply_client(client, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('client_form.html', client=client, form=request.form)
        db.session.commit()
        return redirect(url_for('client_detail', client_id=client.id))
    return render_template('client_form.html', client=client, form=client.to_dict())


@app.route('/clients/delete/<int:client_id>', methods=['POST'])
def delete_client(client_id: int):
    client = Client.query.get_or_404(client_id)
    if client.cars:
        flash('Reassign or delete this client\'s cars before deleting the client.')
        return redirect(url_for('client_detail', client_id=client.id))
    db.session.delete(client)
    db.session.commit()
    return redirect(url_for('list_clients'))


@app.route('/clients/<int:client_id>/access/<action>', methods=['POST'])
def change_client_access(client_id: int, action: str):
    client = Client.query.get_or_404(client_id)
    set_client_access(client, action)
    db.session.commit()
    flash(f"Client access is now {client.access_status}.")
    return redirect(url_for('client_detail', client_id=client.id))


@app.route('/clients/<int:client_id>')
def client_detail(client_id: int):
    """
    Client profile with cars, onboarding, banking records, contracts and
    the Totals tab.  Totals filters come from the query string (``car``,
    ``year``, ``from``, ``to``) the same way the API takes them.
    """
    client = Client.query.get_or_404(client_id)
    car = request.args.get('car', 'all')
    year = request.args.get('year', str(date.today().year))
    try:
        totals = client_totals(client, car, year, request.args.get('from'), request.args.get('to'))
    except ValidationError as exc:
        flash(str(exc))
        totals = None
    return render_template('client_detail.html', client=client, totals=totals,
                           selected_car=car, selected_year=year,
                           income_fields=earnings.INCOME_FIELDS,
                           cogs_fields=earnings.COGS_FIELDS,
                           direct_delivery_fields=earnings.DIRECT_DELIVERY_FIELDS,
                           reimbursed_fields=earnings.REIMBURSED_BILLS_FIELDS)


# ---------------------------------------------------------------------------
# Banking info

@app.route('/clients/<int:client_id>/banking/add', methods=['GET', 'POST'])
def add_banking_info(client_id: int):
    client = Client.query.get_or_404(client_id)
    if request.method == 'POST':
        info = BankingInfo(client_id=client.id)
        try:
            apply_banking_info(info, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('banking_form.html', client=client, info=None, form=request.form)
        db.session.add(info)
        db.session.flush()
        ensure_single_default(info)
        db.session.commit()
        return redirect(url_for('client_detail', client_id=client.id))
    return render_template('banking_form.html', client=client, info=None, form={})


@app.route('/banking/edit/<int:info_id>', methods=['GET', 'POST'])
def edit_banking_info(info_id: int):
    info = BankingInfo.query.get_or_404(info_id)
    if request.method == 'POST':
        try:
            apply_banking_info(info, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('banking_form.html', client=info.client, info=info, form=request.form)
        ensure_single_default(info)
        db.session.commit()
        return redirect(url_for('client_detail', client_id=info.client_id))
    return render_template('banking_form.html', client=info.client, info=info, form=info.to_dict())


@app.route('/banking/delete/<int:info_id>', methods=['POST'])
def delete_banking_info(info_id: int):
    info = BankingInfo.query.get_or_404(info_id)
    client_id = info.client_id
    db.session.delete(info)
    db.session.commit()
    return redirect(url_for('client_detail', client_id=client_id))


# ---------------------------------------------------------------------------
# Contracts

@app.route('/contracts')
def list_contracts():
    status = request.args.get('status', 'all')
    query = Contract.query
    if status in CONTRACT_STATUSES:
        query = query.filter_by(status=status)
    contracts = query.order_by(Contract.sent_at.desc()).all()
    return render_template('contracts.html', contracts=contracts, status=status)


@app.route('/clients/<int:client_id>/contracts/add', methods=['GET', 'POST'])
def add_contract(client_id: int):
    client = Client.query.get_or_404(client_id)
    if request.method == 'POST':
        contract = Contract(client_id=client.id)
        try:
            apply_contract(contract, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('contract_form.html', client=client, form=request.form)
        db.session.add(contract)
        db.session.commit()
        return redirect(url_for('client_detail', client_id=client.id))
    return render_template('contract_form.html', client=client, form={})


def sign_contract(contract: Contract):
    if contract.status == 'signed':
        raise ValidationError("Contract is already signed")
    contract.status = 'signed'
    contract.signed_at = datetime.utcnow()
    app.logger.info("Contract %s signed", contract.id)


def resend_contract(contract: Contract):
    if contract.status != 'pending':
        raise ValidationError("Only pending contracts can be resent")
    contract.token = uuid.uuid4().hex
    contract.sent_at = datetime.utcnow()
    contract.resend_count = (contract.resend_count or 0) + 1
    app.logger.info("Contract %s resent (%s)", contract.id, contract.resend_count)


@app.route('/contracts/sign/<int:contract_id>', methods=['POST'])
def mark_contract_signed(contract_id: int):
    contract = Contract.query.get_or_404(contract_id)
    sign_contract(contract)
    db.session.commit()
    return redirect(request.referrer or url_for('list_contracts'))


@app.route('/contracts/resend/<int:contract_id>', methods=['POST'])
def resend_contract_view(contract_id: int):
    contract = Contract.query.get_or_404(contract_id)
    resend_contract(contract)
    db.session.commit()
    flash('Contract resent.')
    return redirect(request.referrer or url_for('list_contracts'))


# ---------------------------------------------------------------------------
# Cars

@app.route('/cars')
def list_cars():
    """
    Display the fleet, optionally filtered by status or a search over VIN,
    plate and make/model.
    """
    status = request.args.get('status', 'all')
    search = request.args.get('q', '').strip()
    query = Car.query
    if status in CAR_STATUSES:
        query = query.filter_by(status=status)
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Car.vin.ilike(like), Car.license_plate.ilike(like),
                                 Car.make.ilike(like), Car.model.ilike(like)))
    cars = query.order_by(Car.created_at.desc()).all()
    return render_template('cars.html', cars=cars, status=status, search=search, statuses=CAR_STATUSES)


@app.route('/cars/add', methods=['GET', 'POST'])
def add_car():
    clients = Client.query.order_by(Client.last_name.asc()).all()
    if request.method == 'POST':
        car = Car()
        try:
            apply_car(car, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('car_form.html', car=None, clients=clients,
                                   statuses=CAR_STATUSES, form=request.form)
        db.session.add(car)
        db.session.commit()
        return redirect(url_for('car_detail', car_id=car.id))
    form = {'clientId': request.args.get('client_id', '')}
    return render_template('car_form.html', car=None, clients=clients, statuses=CAR_STATUSES, form=form)


@app.route('/cars/edit/<int:car_id>', methods=['GET', 'POST'])
def edit_car(car_id: int):
    """Edit an existing car."""
    car = Car.query.get_or_404(car_id)
    clients = Client.query.order_by(Client.last_name.asc()).all()
    if request.method == 'POST':
        try:
            apply_car(car, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('car_form.html', car=car, clients=clients,
                                   statuses=CAR_STATUSES, form=request.form)
        db.session.commit()
        return redirect(url_for('car_detail', car_id=car.id))
    return render_template('car_form.html', car=car, clients=clients, statuses=CAR_STATUSES, form=car.to_dict())


@app.route('/cars/delete/<int:car_id>', methods=['POST'])
def delete_car(car_id: int):
    car = Car.query.get_or_404(car_id)
    db.session.delete(car)
    db.session.commit()
    return redirect(url_for('list_cars'))


@app.route('/cars/<int:car_id>')
def car_detail(car_id: int):
    car = Car.query.get_or_404(car_id)
    onboarding = latest_onboarding_for_vin(car.vin)
    return render_template('car_detail.html', car=car, onboarding=onboarding,
                           current_year=date.today().year)


def latest_onboarding_for_vin(vin):
    return (OnboardingSubmission.query.filter_by(vin=vin)
            .order_by(OnboardingSubmission.submitted_at.desc()).first())


# ---------------------------------------------------------------------------
# Income and expenses

@app.route('/cars/<int:car_id>/income-expense/<int:year>')
def income_expense(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    calc = build_calculator(car.id, year)
    subcategories = (DynamicSubcategory.query.filter_by(car_id=car.id, year=year)
                     .order_by(DynamicSubcategory.display_order.asc()).all())
    return render_template('income_expense.html', car=car, year=year, calc=calc,
                           ledger=calc.ledger, months=earnings.MONTHS,
                           month_numbers=earnings.MONTH_NUMBERS,
                           category_fields=earnings.CATEGORY_FIELDS,
                           category_labels=earnings.CATEGORY_LABELS,
                           dynamic_categories=earnings.DYNAMIC_CATEGORIES,
                           subcategories=subcategories)


@app.route('/cars/<int:car_id>/income-expense/<int:year>/cell', methods=['POST'])
def update_income_expense_cell(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    form = request.form
    set_entry(car.id, year, form.get('category'), form.get('field'), form.get('month'), form.get('value'))
    db.session.commit()
    return redirect(url_for('income_expense', car_id=car.id, year=year))


@app.route('/cars/<int:car_id>/income-expense/<int:year>/mode/<int:month>', methods=['POST'])
def toggle_month_mode(car_id: int, year: int, month: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    set_month_mode(car.id, year, validate_month(month))
    db.session.commit()
    flash('Mode updated successfully')
    return redirect(url_for('income_expense', car_id=car.id, year=year))


@app.route('/cars/<int:car_id>/income-expense/<int:year>/ski-racks/<int:month>', methods=['POST'])
def update_ski_racks_owner(car_id: int, year: int, month: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    owner = validate_choice(request.form.get('owner'), earnings.SKI_RACKS_OWNERS, 'Ski racks owner')
    get_formula_setting(car.id, year, validate_month(month)).ski_racks_owner = owner
    db.session.commit()
    return redirect(url_for('income_expense', car_id=car.id, year=year))


@app.route('/cars/<int:car_id>/income-expense/<int:year>/subcategories', methods=['POST'])
def add_subcategory_view(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    add_subcategory(car.id, year, request.form.get('category'), request.form.get('name'))
    db.session.commit()
    return redirect(url_for('income_expense', car_id=car.id, year=year))


@app.route('/subcategories/<int:sub_id>/value', methods=['POST'])
def update_subcategory_value(sub_id: int):
    sub = DynamicSubcategory.query.get_or_404(sub_id)
    set_subcategory_value(sub, request.form.get('month'), request.form.get('value'))
    db.session.commit()
    return redirect(url_for('income_expense', car_id=sub.car_id, year=sub.year))


@app.route('/subcategories/delete/<int:sub_id>', methods=['POST'])
def delete_subcategory(sub_id: int):
    sub = DynamicSubcategory.query.get_or_404(sub_id)
    car_id, year = sub.car_id, sub.year
    db.session.delete(sub)
    db.session.commit()
    return redirect(url_for('income_expense', car_id=car_id, year=year))


@app.route('/cars/<int:car_id>/earnings')
def car_earnings(car_id: int):
    """
    Yearly earnings table for a car: every ledger row plus the computed
    split, carry-over and expense rows, each with its year-end recon, the
    recon split and the total.
    """
    car = Car.query.get_or_404(car_id)
    year = validate_year(request.args.get('year', date.today().year))
    calc = build_calculator(car.id, year)
    sections = earnings.earnings_table(calc)
    return render_template('earnings.html', car=car, year=year, sections=sections,
                           months=earnings.MONTHS, onboarding=latest_onboarding_for_vin(car.vin))


@app.route('/cars/<int:car_id>/income-expense/<int:year>/export.csv')
def export_income_expense_csv(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    content = income_export.export_csv(car, build_calculator(car.id, year))
    filename = income_export.export_filename(car, year, 'csv')
    return Response(content, mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename="{filename}"'})


# ---------------------------------------------------------------------------
# Owner payments

@app.route('/payments')
def list_payments():
    status = request.args.get('status', 'all')
    query = Payment.query
    if status in PAYMENT_STATUSES:
        query = query.filter_by(status=status)
    payments = query.order_by(Payment.year_month.desc(), Payment.id.desc()).all()
    return render_template('payments.html', payments=payments, status=status)


@app.route('/payments/add/<int:car_id>', methods=['GET', 'POST'])
def add_payment(car_id: int):
    """
    Record an owner payout for a car.  The payable amount is always the car
    owner split of the chosen month; the balance is payout minus payable.
    """
    car = Car.query.get_or_404(car_id)
    if request.method == 'POST':
        payment = Payment(car_id=car.id, client_id=car.client_id)
        try:
            apply_payment(payment, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('payment_form.html', car=car, payment=None,
                                   statuses=PAYMENT_STATUSES, form=request.form)
        db.session.add(payment)
        db.session.commit()
        app.logger.info("Payment %s recorded for car %s (%s)", payment.id, car.id, payment.year_month)
        return redirect(url_for('list_payments'))
    form = {'yearMonth': date.today().strftime('%Y-%m')}
    return render_template('payment_form.html', car=car, payment=None, statuses=PAYMENT_STATUSES, form=form)


@app.route('/payments/edit/<int:payment_id>', methods=['GET', 'POST'])
def edit_payment(payment_id: int):
    payment = Payment.query.get_or_404(payment_id)
    if request.method == 'POST':
        try:
            apply_payment(payment, request.form)
        except ValidationError as exc:
            flash(str(exc))
            return render_template('payment_form.html', car=payment.car, payment=payment,
                                   statuses=PAYMENT_STATUSES, form=request.form)
        db.session.commit()
        return redirect(url_for('list_payments'))
    return render_template('payment_form.html', car=payment.car, payment=payment,
                           statuses=PAYMENT_STATUSES, form=payment.to_dict())


@app.route('/payments/delete/<int:payment_id>', methods=['POST'])
def delete_payment(payment_id: int):
    payment = Payment.query.get_or_404(payment_id)
    db.session.delete(payment)
    db.session.commit()
    return redirect(url_for('list_payments'))


# ---------------------------------------------------------------------------
# JSON API

@app.route('/api/clients', methods=['GET'])
def api_list_clients():
    clients = query_clients(request.args.get('search', '').strip(), request.args.get('status'))
    return api_ok([c.to_dict() for c in clients])


@app.route('/api/clients', methods=['POST'])
def api_create_client():
    client = Client()
    apply_client(client, request_data())
    db.session.add(client)
    db.session.commit()
    return api_ok(client.to_dict(), 201)


@app.route('/api/clients/<int:client_id>', methods=['GET'])
def api_get_client(client_id: int):
    client = Client.query.get_or_404(client_id)
    return api_ok(client.to_dict(include_cars=True))


@app.route('/api/clients/<int:client_id>', methods=['PUT', 'PATCH'])
def api_update_client(client_id: int):
    client = Client.query.get_or_404(client_id)
    data = dict(client.to_dict())
    data.update(request_data())
    apply_client(client, data)
    db.session.commit()
    return api_ok(client.to_dict())


@app.route('/api/clients/<int:client_id>', methods=['DELETE'])
def api_delete_client(client_id: int):
    client = Client.query.get_or_404(client_id)
    if client.cars:
        raise ValidationError("Client still has cars assigned")
    db.session.delete(client)
    db.session.commit()
    return api_ok({'id': client_id})


@app.route('/api/clients/<int:client_id>/<any(block, revoke, reactivate):action>', methods=['POST'])
def api_client_access(client_id: int, action: str):
    client = Client.query.get_or_404(client_id)
    set_client_access(client, action)
    db.session.commit()
    return api_ok(client.to_dict())


@app.route('/api/clients/<int:client_id>/onboarding', methods=['GET'])
def api_client_onboarding(client_id: int):
    client = Client.query.get_or_404(client_id)
    return api_ok([o.to_dict() for o in client.onboardings])


@app.route('/api/clients/<int:client_id>/onboarding', methods=['POST'])
def api_create_onboarding(client_id: int):
    client = Client.query.get_or_404(client_id)
    submission = OnboardingSubmission(client_id=client.id)
    apply_onboarding(submission, request_data())
    db.session.add(submission)
    db.session.commit()
    app.logger.info("Onboarding %s submitted for client %s", submission.id, client.id)
    return api_ok(submission.to_dict(), 201)


@app.route('/api/onboarding/vin/<vin>', methods=['GET'])
def api_onboarding_by_vin(vin: str):
    submission = latest_onboarding_for_vin(vin.strip().upper())
    if submission is None:
        return jsonify(success=False, data=None, error='No onboarding found for this VIN'), 404
    return api_ok(submission.to_dict())


@app.route('/api/clients/<int:client_id>/totals', methods=['GET'])
def api_client_totals(client_id: int):
    client = Client.query.get_or_404(client_id)
    args = request.args
    totals = client_totals(client, args.get('car'), args.get('year'), args.get('from'), args.get('to'))
    return api_ok(totals)


@app.route('/api/clients/<int:client_id>/banking-info', methods=['GET'])
def api_list_banking_info(client_id: int):
    client = Client.query.get_or_404(client_id)
    return api_ok([b.to_dict() for b in client.banking_infos])


@app.route('/api/clients/<int:client_id>/banking-info', methods=['POST'])
def api_create_banking_info(client_id: int):
    client = Client.query.get_or_404(client_id)
    info = BankingInfo(client_id=client.id)
    apply_banking_info(info, request_data())
    db.session.add(info)
    db.session.flush()
    ensure_single_default(info)
    db.session.commit()
    return api_ok(info.to_dict(), 201)


@app.route('/api/banking-info/<int:info_id>', methods=['PUT', 'PATCH'])
def api_update_banking_info(info_id: int):
    info = BankingInfo.query.get_or_404(info_id)
    data = dict(info.to_dict())
    data.update(request_data())
    apply_banking_info(info, data)
    ensure_single_default(info)
    db.session.commit()
    return api_ok(info.to_dict())


@app.route('/api/banking-info/<int:info_id>', methods=['DELETE'])
def api_delete_banking_info(info_id: int):
    info = BankingInfo.query.get_or_404(info_id)
    db.session.delete(info)
    db.session.commit()
    return api_ok({'id': info_id})


@app.route('/api/cars', methods=['GET'])
def api_list_cars():
    query = Car.query
    status = request.args.get('status')
    if status in CAR_STATUSES:
        query = query.filter_by(status=status)
    client_id = parse_int(request.args.get('clientId'), 'Client')
    if client_id is not None:
        query = query.filter_by(client_id=client_id)
    return api_ok([car.to_dict() for car in query.order_by(Car.id.asc()).all()])


@app.route('/api/cars', methods=['POST'])
def api_create_car():
    car = Car()
    apply_car(car, request_data())
    db.session.add(car)
    db.session.commit()
    return api_ok(car.to_dict(), 201)


@app.route('/api/cars/<int:car_id>', methods=['GET'])
def api_get_car(car_id: int):
    car = Car.query.get_or_404(car_id)
    data = car.to_dict()
    data['owner'] = car.client.to_dict() if car.client else None
    return api_ok(data)


@app.route('/api/cars/<int:car_id>', methods=['PUT', 'PATCH'])
def api_update_car(car_id: int):
    car = Car.query.get_or_404(car_id)
    data = dict(car.to_dict())
    data.update(request_data())
    apply_car(car, data)
    db.session.commit()
    return api_ok(car.to_dict())


@app.route('/api/cars/<int:car_id>', methods=['DELETE'])
def api_delete_car(car_id: int):
    car = Car.query.get_or_404(car_id)
    db.session.delete(car)
    db.session.commit()
    return api_ok({'id': car_id})


@app.route('/api/contracts', methods=['GET'])
def api_list_contracts():
    query = Contract.query
    status = request.args.get('status')
    if status in CONTRACT_STATUSES:
        query = query.filter_by(status=status)
    client_id = parse_int(request.args.get('clientId'), 'Client')
    if client_id is not None:
        query = query.filter_by(client_id=client_id)
    return api_ok([c.to_dict() for c in query.order_by(Contract.sent_at.desc()).all()])


@app.route('/api/contracts', methods=['POST'])
def api_create_contract():
    data = request_data()
    client = Client.query.get(parse_int(data.get('clientId'), 'Client', required=True))
    if client is None:
        raise ValidationError("Selected client does not exist")
    contract = Contract(client_id=client.id)
    apply_contract(contract, data)
    db.session.add(contract)
    db.session.commit()
    return api_ok(contract.to_dict(), 201)


@app.route('/api/contracts/<int:contract_id>/resend', methods=['POST'])
def api_resend_contract(contract_id: int):
    contract = Contract.query.get_or_404(contract_id)
    resend_contract(contract)
    db.session.commit()
    return api_ok(contract.to_dict())


@app.route('/api/contracts/<int:contract_id>/sign', methods=['POST'])
def api_sign_contract(contract_id: int):
    contract = Contract.query.get_or_404(contract_id)
    sign_contract(contract)
    db.session.commit()
    return api_ok(contract.to_dict())


@app.route('/api/income-expense/<int:car_id>/<int:year>', methods=['GET'])
def api_income_expense(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    return api_ok(ledger_payload(car, validate_year(year)))


@app.route('/api/income-expense/<int:car_id>/<int:year>/cells', methods=['POST'])
def api_update_cells(car_id: int, year: int):
    """
    Save edited cells.  The body is ``{"changes": [{"category", "field",
    "month", "value"}, ...]}``; all changes are saved together or not at all.
    """
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    changes = request_data().get('changes') or []
    if not changes:
        raise ValidationError("No changes submitted")
    try:
        for change in changes:
            set_entry(car.id, year, change.get('category'), change.get('field'),
                      change.get('month'), change.get('value'))
    except ValidationError:
        db.session.rollback()
        raise
    db.session.commit()
    app.logger.info("Saved %d cell(s) for car %s %s", len(changes), car.id, year)
    return api_ok(ledger_payload(car, year))


@app.route('/api/income-expense/<int:car_id>/<int:year>/modes', methods=['POST'])
def api_update_mode(car_id: int, year: int):
    """Set a month's mode (``{"month", "mode"}``) or toggle it when mode is omitted."""
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    data = request_data()
    month = validate_month(data.get('month'))
    mode = parse_int(data.get('mode'), 'Mode')
    set_month_mode(car.id, year, month, mode)
    db.session.commit()
    return api_ok(ledger_payload(car, year))


@app.route('/api/income-expense/<int:car_id>/<int:year>/splits', methods=['POST'])
def api_update_splits(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    data = request_data()
    set_month_splits(car.id, year, validate_month(data.get('month')),
                     data.get('carManagementSplit'), data.get('carOwnerSplit'))
    db.session.commit()
    return api_ok(ledger_payload(car, year))


@app.route('/api/income-expense/<int:car_id>/<int:year>/ski-racks-owner', methods=['POST'])
def api_update_ski_racks_owner(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    data = request_data()
    month = validate_month(data.get('month'))
    owner = validate_choice(data.get('owner'), earnings.SKI_RACKS_OWNERS, 'Ski racks owner')
    get_formula_setting(car.id, year, month).ski_racks_owner = owner
    db.session.commit()
    return api_ok(ledger_payload(car, year))


@app.route('/api/income-expense/<int:car_id>/<int:year>/earnings', methods=['GET'])
def api_earnings(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    year = validate_year(year)
    return api_ok({'carId': car.id, 'year': year,
                   'sections': earnings.earnings_table(build_calculator(car.id, year))})


@app.route('/api/income-expense/<int:car_id>/<int:year>/subcategories', methods=['GET'])
def api_list_subcategories(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    subs = (DynamicSubcategory.query.filter_by(car_id=car.id, year=validate_year(year))
            .order_by(DynamicSubcategory.display_order.asc()).all())
    return api_ok([s.to_dict() for s in subs])


@app.route('/api/income-expense/<int:car_id>/<int:year>/subcategories', methods=['POST'])
def api_add_subcategory(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    data = request_data()
    sub = add_subcategory(car.id, validate_year(year), data.get('category'), data.get('name'))
    db.session.commit()
    return api_ok(sub.to_dict(), 201)


@app.route('/api/subcategories/<int:sub_id>', methods=['PATCH'])
def api_update_subcategory(sub_id: int):
    """Rename a subcategory (``name``) and/or set one month's ``value``."""
    sub = DynamicSubcategory.query.get_or_404(sub_id)
    data = request_data()
    if 'name' in data:
        name = parse_str(data.get('name'))
        if not name:
            raise ValidationError("Subcategory name is required")
        sub.name = name
    if 'month' in data:
        set_subcategory_value(sub, data.get('month'), data.get('value'))
    db.session.commit()
    return api_ok(sub.to_dict())


@app.route('/api/subcategories/<int:sub_id>', methods=['DELETE'])
def api_delete_subcategory(sub_id: int):
    sub = DynamicSubcategory.query.get_or_404(sub_id)
    db.session.delete(sub)
    db.session.commit()
    return api_ok({'id': sub_id})


@app.route('/api/income-expense/<int:car_id>/<int:year>/export.csv', methods=['GET'])
def api_export_csv(car_id: int, year: int):
    return export_income_expense_csv(car_id, year)


@app.route('/api/income-expense/<int:car_id>/<int:year>/export.json', methods=['GET'])
def api_export_json(car_id: int, year: int):
    car = Car.query.get_or_404(car_id)
    return jsonify(income_export.export_json(car, load_ledger(car.id, validate_year(year))))


@app.route('/api/payments', methods=['GET'])
def api_list_payments():
    query = Payment.query
    car_id = parse_int(request.args.get('carId'), 'Car')
    if car_id is not None:
        query = query.filter_by(car_id=car_id)
    status = request.args.get('status')
    if status in PAYMENT_STATUSES:
        query = query.filter_by(status=status)
    return api_ok([p.to_dict() for p in query.order_by(Payment.year_month.asc()).all()])


@app.route('/api/payments', methods=['POST'])
def api_create_payment():
    data = request_data()
    car = Car.query.get(parse_int(data.get('carId'), 'Car', required=True))
    if car is None:
        raise ValidationError("Selected car does not exist")
    payment = Payment(car_id=car.id, client_id=car.client_id)
    apply_payment(payment, data)
    db.session.add(payment)
    db.session.commit()
    app.logger.info("Payment %s recorded for car %s (%s)", payment.id, car.id, payment.year_month)
    return api_ok(payment.to_dict(), 201)


@app.route('/api/payments/<int:payment_id>', methods=['PUT', 'PATCH'])
def api_update_payment(payment_id: int):
    payment = Payment.query.get_or_404(payment_id)
    data = dict(payment.to_dict())
    data.update(request_data())
    apply_payment(payment, data)
    db.session.commit()
    return api_ok(payment.to_dict())


@app.route('/api/payments/<int:payment_id>', methods=['DELETE'])
def api_delete_payment(payment_id: int):
    payment = Payment.query.get_or_404(payment_id)
    db.session.delete(payment)
    db.session.commit()
    return api_ok({'id': payment_id})


def init_db():
    """Initialise the database tables."""
    db.create_all()
    print("Database initialised.")


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Fleet administration app")
    parser.add_argument('--init-db', action='store_true', help='Initialise the database')
    parser.add_argument('--port', type=int, default=5000, help='Port for the development server')
    args = parser.parse_args()
    if args.init_db:
        with app.app_context():
            init_db()
    else:
        app.run(debug=True, port=args.port)
