"""Monthly income/expense formulas for the fleet admin.

Each car keeps a ledger per calendar year: twelve monthly values for every
income and expense field, a per-month split mode (50 for a 50:50 split
between the management company and the car owner, 70 for 30:70) and a
per-month ski rack owner.  From that ledger this module derives the car
management split, the car owner split, the negative balance carried over
from month to month and the yearly earnings table.

Nothing in here touches Flask or the database.  The web app loads the rows,
builds a ``YearLedger`` for the requested year and the year before it, and
hands both to an ``EarningsCalculator``.
"""

import math
from collections import defaultdict

# Ledgers start in 2019; carry-over for that year is always zero.
FIRST_LEDGER_YEAR = 2019
# From this year on ski rack income has its own attribution rules.
SKI_RACKS_FORMULA_YEAR = 2026

MODE_50 = 50
MODE_70 = 70
MODES = (MODE_50, MODE_70)

SKI_RACKS_GLA = 'GLA'
SKI_RACKS_CAR_OWNER = 'CAR_OWNER'
SKI_RACKS_OWNERS = (SKI_RACKS_GLA, SKI_RACKS_CAR_OWNER)

# Previous-year carry-over either ignores stored modes (the historical
# behaviour) or reads them like the current year does.
PREVIOUS_YEAR_MODES_DEFAULT = 'default'
PREVIOUS_YEAR_MODES_STORED = 'stored'

MONTHS = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
          'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']
MONTH_NUMBERS = range(1, 13)

# ---------------------------------------------------------------------------
# Field catalogue.  Each category maps to an ordered list of
# (field, label) pairs; field names are the camelCase keys used on the wire.

INCOME_FIELDS = [
    ('rentalIncome', 'Rental Income'),
    ('deliveryIncome', 'Delivery Income'),
    ('electricPrepaidIncome', 'Electric Prepaid Income'),
    ('smokingFines', 'Smoking Fines'),
    ('gasPrepaidIncome', 'Gas Prepaid Income'),
    ('skiRacksIncome', 'Ski Racks Income'),
    ('milesIncome', 'Miles Income'),
    ('childSeatIncome', 'Child Seat Income'),
    ('coolersIncome', 'Coolers Income'),
    ('insuranceWreckIncome', 'Income Insurance and Client Wrecks'),
    ('otherIncome', 'Other Income'),
]

DIRECT_DELIVERY_FIELDS = [
    ('laborCarCleaning', 'Labor - Car Cleaning'),
    ('laborDelivery', 'Labor - Delivery'),
    ('parkingAirport', 'Parking - Airport'),
    ('parkingLot', 'Parking - Lot'),
    ('uberLyftLime', 'Taxi/Uber/Lyft/Lime'),
]

COGS_FIELDS = [
    ('autoBodyShopWreck', 'Auto Body Shop / Wreck'),
    ('alignment', 'Alignment'),
    ('battery', 'Battery'),
    ('brakes', 'Brakes'),
    ('carPayment', 'Car Payment'),
    ('carInsurance', 'Car Insurance'),
    ('carSeats', 'Car Seats'),
    ('cleaningSuppliesTools', 'Cleaning Supplies / Tools'),
    ('emissions', 'Emissions'),
    ('gpsSystem', 'GPS System'),
    ('keyFob', 'Keys & Fob'),
    ('laborCleaning', 'Labor - Detailing'),
    ('licenseRegistration', 'License & Registration'),
    ('mechanic', 'Mechanic'),
    ('oilLube', 'Oil/Lube'),
    ('parts', 'Parts'),
    ('skiRacks', 'Ski Racks'),
    ('tickets', 'Tickets & Tolls'),
    ('tiredAirStation', 'Tired Air Station'),
    ('tires', 'Tires'),
    ('towingImpoundFees', 'Towing / Impound Fees'),
    ('uberLyftLime', 'Uber/Lyft/Lime'),
    ('windshield', 'Windshield'),
    ('wipers', 'Wipers'),
]

PARKING_FEE_LABOR_FIELDS = [
    ('laborCleaning', 'GLA Labor - Cleaning'),
    ('glaParkingFee', 'GLA Parking Fee'),
]

REIMBURSED_BILLS_FIELDS = [
    ('electricNotReimbursed', 'Electric - Not Reimbursed'),
    ('electricReimbursed', 'Electric - Reimbursed'),
    ('gasNotReimbursed', 'Gas - Not Reimbursed'),
    ('gasReimbursed', 'Gas - Reimbursed'),
    ('gasServiceRun', 'Gas - Service Run'),
    ('parkingAirport', 'Parking Airport'),
    ('uberLyftLimeNotReimbursed', 'Uber/Lyft/Lime - Not Reimbursed'),
    ('uberLyftLimeReimbursed', 'Uber/Lyft/Lime - Reimbursed'),
]

HISTORY_FIELDS = [
    ('daysRented', 'Days Rented'),
    ('carsAvailableForRent', 'Cars Available For Rent'),
    ('tripsTaken', 'Trips Taken'),
]

PARKING_AIRPORT_QB_FIELDS = [
    ('totalParkingAirport', 'Total Parking Airport'),
]

INCOME = 'income'
DIRECT_DELIVERY = 'direct_delivery'
COGS = 'cogs'
PARKING_FEE_LABOR = 'parking_fee_labor'
REIMBURSED_BILLS = 'reimbursed_bills'
HISTORY = 'history'
PARKING_AIRPORT_QB = 'parking_airport_qb'

CATEGORY_FIELDS = {
    INCOME: INCOME_FIELDS,
    DIRECT_DELIVERY: DIRECT_DELIVERY_FIELDS,
    COGS: COGS_FIELDS,
    PARKING_FEE_LABOR: PARKING_FEE_LABOR_FIELDS,
    REIMBURSED_BILLS: REIMBURSED_BILLS_FIELDS,
    HISTORY: HISTORY_FIELDS,
    PARKING_AIRPORT_QB: PARKING_AIRPORT_QB_FIELDS,
}

CATEGORY_LABELS = {
    INCOME: 'INCOME AND EXPENSES',
    DIRECT_DELIVERY: 'OPERATING EXPENSES (DIRECT DELIVERY)',
    COGS: 'OPERATING EXPENSES (COGS - PER VEHICLE)',
    PARKING_FEE_LABOR: 'GLA PARKING FEE & LABOR CLEANING',
    REIMBURSED_BILLS: 'REIMBURSED AND NON-REIMBURSED BILLS',
    HISTORY: 'HISTORY',
    PARKING_AIRPORT_QB: 'PARKING AIRPORT AVERAGE (QB)',
}

# Categories that accept user-defined subcategory rows.
DYNAMIC_CATEGORIES = (DIRECT_DELIVERY, COGS, PARKING_FEE_LABOR, REIMBURSED_BILLS)


def category_field_names(category):
    return [name for name, _ in CATEGORY_FIELDS[category]]


def to_number(value) -> float:
    """Coerce a stored or submitted value to float; blanks and junk read as 0."""
    if value is None or value == '':
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return number


def default_split(mode):
    """Return (management %, owner %) for a month mode."""
    if mode == MODE_70:
        return 30.0, 70.0
    return 50.0, 50.0


class MonthSetting:
    """Split mode, ski rack owner and optional stored split percentages."""

    def __init__(self, mode=MODE_50, ski_racks_owner=SKI_RACKS_GLA,
                 management_split=None, owner_split=None):
        self.mode = mode if mode in MODES else MODE_50
        self.ski_racks_owner = ski_racks_owner or SKI_RACKS_GLA
        self.management_split = management_split
        self.owner_split = owner_split

    def split_percents(self):
        default_mgmt, default_owner = default_split(self.mode)
        mgmt = default_mgmt if self.management_split is None else to_number(self.management_split)
        owner = default_owner if self.owner_split is None else to_number(self.owner_split)
        return mgmt, owner

    def __repr__(self) -> str:
        return f"<MonthSetting mode={self.mode} ski_racks={self.ski_racks_owner}>"


class YearLedger:
    """All monthly values of one car for one calendar year."""

    def __init__(self, year, values=None, settings=None, subcategories=None):
        self.year = int(year)
        # (category, field, month) -> float
        self._values = {}
        for key, value in (values or {}).items():
            self._values[key] = to_number(value)
        self._settings = dict(settings or {})
        # category -> [{'name': ..., 'values': {month: float}}]
        self._subcategories = defaultdict(list)
        for category, rows in (subcategories or {}).items():
            for row in rows:
                self.add_subcategory(category, row['name'], row.get('values'))

    def value(self, category, field, month) -> float:
        return self._values.get((category, field, month), 0.0)

    def set_value(self, category, field, month, value):
        self._values[(category, field, month)] = to_number(value)

    def setting(self, month) -> MonthSetting:
        return self._settings.get(month) or MonthSetting()

    def set_setting(self, month, setting):
        self._settings[month] = setting

    def mode(self, month):
        return self.setting(month).mode

    def add_subcategory(self, category, name, values=None):
        cleaned = {int(m): to_number(v) for m, v in (values or {}).items()}
        self._subcategories[category].append({'name': name, 'values': cleaned})

    def subcategories(self, category):
        return list(self._subcategories.get(category, []))

    def income(self, month):
        return {name: self.value(INCOME, name, month) for name in category_field_names(INCOME)}

    def category_total(self, category, month) -> float:
        total = sum(self.value(category, name, month) for name in category_field_names(category))
        for row in self._subcategories.get(category, []):
            total += row['values'].get(month, 0.0)
        return total

    def row(self, category, field):
        return [self.value(category, field, month) for month in MONTH_NUMBERS]

    def is_empty(self) -> bool:
        return not any(self._values.values()) and not self._subcategories

    @classmethod
    def from_payload(cls, year, payload):
        """Build a ledger from the month-list shape used by the JSON API.

        ``payload`` maps each category to a list of ``{"month": n, field:
        value}`` dicts and may carry ``monthModes``, ``skiRacksOwner`` and
        ``dynamicSubcategories``.
        """
        ledger = cls(year)
        for category in CATEGORY_FIELDS:
            for item in payload.get(category) or []:
                month = int(item.get('month', 0))
                if month not in MONTH_NUMBERS:
                    continue
                for name in category_field_names(category):
                    if name in item:
                        ledger.set_value(category, name, month, item[name])
        modes = payload.get('monthModes') or {}
        owners = payload.get('skiRacksOwner') or {}
        splits = payload.get('splits') or {}
        for month in MONTH_NUMBERS:
            mode = modes.get(month, modes.get(str(month)))
            owner = owners.get(month, owners.get(str(month)))
            split = splits.get(month, splits.get(str(month))) or {}
            if mode is None and owner is None and not split:
                continue
            ledger.set_setting(month, MonthSetting(
                mode=int(mode) if mode is not None else MODE_50,
                ski_racks_owner=owner or SKI_RACKS_GLA,
                management_split=split.get('carManagementSplit'),
                owner_split=split.get('carOwnerSplit'),
            ))
        for category, rows in (payload.get('dynamicSubcategories') or {}).items():
            for row in rows:
                values = {int(v['month']): v.get('value') for v in row.get('values', [])}
                ledger.add_subcategory(category, row['name'], values)
        return ledger

    def to_payload(self):
        payload = {}
        for category in CATEGORY_FIELDS:
            months = []
            for month in MONTH_NUMBERS:
                item = {'month': month}
                for name in category_field_names(category):
                    item[name] = self.value(category, name, month)
                months.append(item)
            payload[category] = months
        payload['monthModes'] = {month: self.mode(month) for month in MONTH_NUMBERS}
        payload['skiRacksOwner'] = {month: self.setting(month).ski_racks_owner for month in MONTH_NUMBERS}
        payload['splits'] = {}
        for month in MONTH_NUMBERS:
            mgmt, owner = self.setting(month).split_percents()
            payload['splits'][month] = {'carManagementSplit': mgmt, 'carOwnerSplit': owner}
        payload['dynamicSubcategories'] = {
            category: [
                {'name': row['name'],
                 'values': [{'month': m, 'value': row['values'].get(m, 0.0)} for m in MONTH_NUMBERS]}
                for row in self._subcategories.get(category, [])
            ]
            for category in DYNAMIC_CATEGORIES
        }
        return payload

    def __repr__(self) -> str:
        return f"<YearLedger {self.year}>"


# ---------------------------------------------------------------------------
# Calculator

def _non_rental_income(income):
    return sum(value for name, value in income.items() if name != 'rentalIncome')


def _carry_over_step(mode, ledger, source_month, previous_carry):
    """Carry-over produced by ``source_month`` for the month that follows it.

    ``mode`` is the split mode of the month being computed, while income,
    expenses and the owner split percentage come from ``source_month``.
    """
    income = ledger.income(source_month)
    direct_delivery = ledger.category_total(DIRECT_DELIVERY, source_month)
    cogs = ledger.category_total(COGS, source_month)
    rental = income['rentalIncome']
    non_rental = _non_rental_income(income)

    if mode == MODE_70:
        owner_pct = ledger.setting(source_month).split_percents()[1] / 100
        parking_labor = ledger.category_total(PARKING_FEE_LABOR, source_month)
        part1 = income['milesIncome'] + income['smokingFines'] * 0.1
        part2 = rental - non_rental
        result = (part1 - direct_delivery - cogs - parking_labor
                  + previous_carry + part2 * owner_pct)
    else:
        result = rental - non_rental - direct_delivery - cogs + previous_carry

    return 0.0 if result > 0 else result


class EarningsCalculator:
    """Evaluate the monthly split formulas for one car-year.

    ``previous`` is the ledger of the year before, needed for January's
    carry-over.  When it is missing an empty ledger stands in for it.

    ``previous_year_modes`` controls which split mode the previous-year
    carry-over chain uses.  The default ignores the stored modes of the
    previous year and treats every month as 50:50, which is how the figures
    have historically been produced; ``'stored'`` reads the stored modes the
    same way the current-year chain does.  The two settings give different
    January carry-overs whenever the previous year had a 30:70 month.
    """

    def __init__(self, ledger, previous=None, previous_year_modes=PREVIOUS_YEAR_MODES_DEFAULT):
        if previous_year_modes not in (PREVIOUS_YEAR_MODES_DEFAULT, PREVIOUS_YEAR_MODES_STORED):
            raise ValueError(f"unknown previous year mode policy: {previous_year_modes!r}")
        self.ledger = ledger
        self.previous = previous if previous is not None else YearLedger(ledger.year - 1)
        self.previous_year_modes = previous_year_modes
        self._carry_cache = {}
        self._previous_carry_cache = {}

    @property
    def year(self) -> int:
        return self.ledger.year

    # -- carry-over ---------------------------------------------------------

    def negative_balance_carry_over(self, month) -> float:
        """Deficit carried into ``month``; never positive."""
        _check_month(month)
        if self.year <= FIRST_LEDGER_YEAR:
            return 0.0
        if month in self._carry_cache:
            return self._carry_cache[month]
        mode = self.ledger.mode(month)
        if month == 1:
            result = _carry_over_step(mode, self.previous, 12,
                                      self.previous_year_carry_over(12))
        else:
            result = _carry_over_step(mode, self.ledger, month - 1,
                                      self.negative_balance_carry_over(month - 1))
        self._carry_cache[month] = result
        return result

    def previous_year_carry_over(self, month) -> float:
        """Carry-over into ``month`` of the previous year.

        Only one previous year is loaded, so its January starts from zero.
        """
        _check_month(month)
        if month == 1 or self.previous.year <= FIRST_LEDGER_YEAR:
            return 0.0
        if month in self._previous_carry_cache:
            return self._previous_carry_cache[month]
        if self.previous_year_modes == PREVIOUS_YEAR_MODES_STORED:
            mode = self.previous.mode(month)
        else:
            mode = MODE_50
        result = _carry_over_step(mode, self.previous, month - 1,
                                  self.previous_year_carry_over(month - 1))
        self._previous_carry_cache[month] = result
        return result

    # -- splits -------------------------------------------------------------

    def split_percents(self, month):
        mgmt, owner = self.ledger.setting(month).split_percents()
        return mgmt / 100, owner / 100

    def car_management_split(self, month) -> float:
        _check_month(month)
        ledger = self.ledger
        income = ledger.income(month)
        mgmt_pct, _ = self.split_percents(month)
        carry = self.negative_balance_carry_over(month)
        direct_delivery = ledger.category_total(DIRECT_DELIVERY, month)
        cogs = ledger.category_total(COGS, month)
        reimbursed = ledger.category_total(REIMBURSED_BILLS, month)

        delivery = income['deliveryIncome']
        electric = income['electricPrepaidIncome']
        smoking = income['smokingFines']
        gas = income['gasPrepaidIncome']
        ski = income['skiRacksIncome']
        extras = (income['childSeatIncome'] + income['coolersIncome']
                  + income['insuranceWreckIncome'] + income['otherIncome'])

        profit = (income['rentalIncome'] - abs(carry) - delivery - electric - smoking
                  - gas - income['milesIncome'] - direct_delivery - cogs)

        if self.year >= SKI_RACKS_FORMULA_YEAR and ski > 0:
            part1 = delivery + electric + gas + extras + smoking * 0.9 - reimbursed
            if ledger.setting(month).ski_racks_owner == SKI_RACKS_GLA:
                part1 += ski
            part2 = (profit - ski - extras) * mgmt_pct
        elif self.year >= SKI_RACKS_FORMULA_YEAR and ski == 0:
            part1 = delivery + electric + gas + smoking * 0.9 - reimbursed
            part2 = profit * mgmt_pct
        else:
            part1 = delivery + electric + smoking + gas - reimbursed
            part2 = profit * mgmt_pct
        return max(part1 + part2, 0.0)

    def car_owner_split(self, month) -> float:
        """Amount payable to the car owner for ``month``."""
        _check_month(month)
        if self.year < FIRST_LEDGER_YEAR:
            return 0.0
        ledger = self.ledger
        income = ledger.income(month)
        _, owner_pct = self.split_percents(month)
        setting = ledger.setting(month)
        carry = self.negative_balance_carry_over(month)
        direct_delivery = ledger.category_total(DIRECT_DELIVERY, month)
        cogs = ledger.category_total(COGS, month)
        parking_labor = ledger.category_total(PARKING_FEE_LABOR, month)

        rental = income['rentalIncome']
        miles = income['milesIncome']
        smoking = income['smokingFines']
        ski = income['skiRacksIncome']
        non_rental = _non_rental_income(income)

        # 50:50 shares the profit after expenses and carry-over; 30:70 leaves
        # expenses and carry-over with the owner and shares gross income.
        if setting.mode == MODE_50:
            part2 = (rental + carry - non_rental - direct_delivery - cogs) * owner_pct
            if self.year >= SKI_RACKS_FORMULA_YEAR:
                part1 = miles + smoking * 0.1
                if ski != 0 and setting.ski_racks_owner == SKI_RACKS_CAR_OWNER:
                    part1 += ski
            else:
                extras = (ski + income['childSeatIncome'] + income['coolersIncome']
                          + income['insuranceWreckIncome'] + income['otherIncome'])
                part1 = miles + extras * owner_pct
        else:
            part1 = (miles - direct_delivery - cogs - parking_labor + carry
                     + smoking * 0.1)
            if (self.year >= SKI_RACKS_FORMULA_YEAR and ski != 0
                    and setting.ski_racks_owner == SKI_RACKS_CAR_OWNER):
                part1 += ski
            part2 = (rental - non_rental) * owner_pct
        return max(part1 + part2, 0.0)

    def car_management_total_expenses(self, month) -> float:
        mgmt_pct, _ = self.split_percents(month)
        return (self.ledger.category_total(REIMBURSED_BILLS, month)
                + (self.ledger.category_total(DIRECT_DELIVERY, month)
                   + self.ledger.category_total(COGS, month)) * mgmt_pct)

    def car_owner_total_expenses(self, month) -> float:
        _, owner_pct = self.split_percents(month)
        return (self.ledger.category_total(DIRECT_DELIVERY, month)
                + self.ledger.category_total(COGS, month)) * owner_pct

    def car_payment(self, month) -> float:
        return self.ledger.value(COGS, 'carPayment', month)

    def total_expenses(self, month) -> float:
        return self.car_management_total_expenses(month) + self.car_owner_total_expenses(month)

    def total_car_profit(self, month) -> float:
        return self.ledger.value(INCOME, 'rentalIncome', month) - self.total_expenses(month)

    def month_summary(self, month):
        """Every computed figure for one month, keyed by wire name."""
        mgmt, owner = self.ledger.setting(month).split_percents()
        return {
            'month': month,
            'mode': self.ledger.mode(month),
            'skiRacksOwner': self.ledger.setting(month).ski_racks_owner,
            'carManagementSplitPercent': mgmt,
            'carOwnerSplitPercent': owner,
            'carManagementSplit': self.car_management_split(month),
            'carOwnerSplit': self.car_owner_split(month),
            'negativeBalanceCarryOver': self.negative_balance_carry_over(month),
            'carPayment': self.car_payment(month),
            'carManagementTotalExpenses': self.car_management_total_expenses(month),
            'carOwnerTotalExpenses': self.car_owner_total_expenses(month),
            'totalExpenses': self.total_expenses(month),
            'totalCarProfit': self.total_car_profit(month),
            'totalDirectDelivery': self.ledger.category_total(DIRECT_DELIVERY, month),
            'totalCogs': self.ledger.category_total(COGS, month),
            'totalParkingFeeLabor': self.ledger.category_total(PARKING_FEE_LABOR, month),
            'totalReimbursedBills': self.ledger.category_total(REIMBURSED_BILLS, month),
        }

    def months(self):
        return [self.month_summary(month) for month in MONTH_NUMBERS]


def _check_month(month):
    if month not in MONTH_NUMBERS:
        raise ValueError(f"month must be between 1 and 12, got {month!r}")


# ---------------------------------------------------------------------------
# Earnings table

def year_end_recon(values) -> float:
    return sum(values)


def year_end_recon_split(values) -> float:
    return year_end_recon(values) * 0.5


def _table_row(label, values, is_total=False):
    values = [float(v) for v in values]
    return {
        'label': label,
        'values': values,
        'yearEndRecon': year_end_recon(values),
        'yearEndReconSplit': year_end_recon_split(values),
        'total': year_end_recon(values),
        'isTotal': is_total,
    }


def _computed(calculator, method):
    fn = getattr(calculator, method)
    return [fn(month) for month in MONTH_NUMBERS]


def _category_section(ledger, category, total_label=None):
    rows = [_table_row(label, ledger.row(category, name))
            for name, label in CATEGORY_FIELDS[category]]
    for sub in ledger.subcategories(category):
        rows.append(_table_row(sub['name'], [sub['values'].get(m, 0.0) for m in MONTH_NUMBERS]))
    if total_label:
        rows.append(_table_row(total_label,
                               [ledger.category_total(category, m) for m in MONTH_NUMBERS],
                               is_total=True))
    return {'key': category, 'label': CATEGORY_LABELS[category], 'rows': rows}


def earnings_table(calculator):
    """Sections of the yearly earnings table for one car."""
    ledger = calculator.ledger
    split_section = {
        'key': 'management_owner_split',
        'label': 'CAR MANAGEMENT OWNER SPLIT',
        'rows': [
            _table_row('Car Management Split', _computed(calculator, 'car_management_split')),
            _table_row('Car Owner Split', _computed(calculator, 'car_owner_split')),
        ],
    }
    income_section = _category_section(ledger, INCOME)
    income_section['rows'].extend([
        _table_row('Negative Balance Carry Over', _computed(calculator, 'negative_balance_carry_over')),
        _table_row('Car Payment', _computed(calculator, 'car_payment')),
        _table_row('Car Management Total Expenses',
                   _computed(calculator, 'car_management_total_expenses')),
        _table_row('Car Owner Total Expenses', _computed(calculator, 'car_owner_total_expenses')),
        _table_row('Total Expenses', _computed(calculator, 'total_expenses'), is_total=True),
        _table_row('Total Car Profit', _computed(calculator, 'total_car_profit'), is_total=True),
    ])
    return [
        split_section,
        income_section,
        _category_section(ledger, DIRECT_DELIVERY, 'TOTAL OPERATING EXPENSE (Direct Delivery)'),
        _category_section(ledger, COGS, 'TOTAL OPERATING EXPENSE (COGS - Per Vehicle)'),
        _category_section(ledger, PARKING_FEE_LABOR, 'TOTAL PARKING FEE & LABOR CLEANING'),
        _category_section(ledger, REIMBURSED_BILLS, 'TOTAL REIMBURSED AND NON-REIMBURSED BILLS'),
        _category_section(ledger, HISTORY),
    ]


# ---------------------------------------------------------------------------
# Client totals

def summarize_totals(calculators):
    """Sum figures across any number of car-years.

    Returns the nested structure shown on the client Totals tab: split
    amounts, income lines, expense lines per category, GLA parking and
    labor, and rental history counters.
    """
    income = {name: 0.0 for name in category_field_names(INCOME)}
    income.update({
        'negativeBalance': 0.0,
        'carManagementTotalExpenses': 0.0,
        'carOwnerTotalExpenses': 0.0,
        'carPayment': 0.0,
        'totalExpenses': 0.0,
    })
    expenses = {
        'directDelivery': {name: 0.0 for name in category_field_names(DIRECT_DELIVERY)},
        'cogs': {name: 0.0 for name in category_field_names(COGS)},
        'reimbursedBills': {name: 0.0 for name in category_field_names(REIMBURSED_BILLS)},
        'totalDirectDelivery': 0.0,
        'totalCogs': 0.0,
        'totalReimbursedBills': 0.0,
        'totalOperatingExpenses': 0.0,
    }
    gla = {'laborCleaning': 0.0, 'parkingFee': 0.0, 'total': 0.0}
    history = {name: 0.0 for name in category_field_names(HISTORY)}
    totals = {
        'carManagementSplit': 0.0,
        'carOwnerSplit': 0.0,
        'carYears': 0,
    }

    for calc in calculators:
        ledger = calc.ledger
        totals['carYears'] += 1
        for month in MONTH_NUMBERS:
            for name in category_field_names(INCOME):
                income[name] += ledger.value(INCOME, name, month)
            income['negativeBalance'] += calc.negative_balance_carry_over(month)
            income['carManagementTotalExpenses'] += calc.car_management_total_expenses(month)
            income['carOwnerTotalExpenses'] += calc.car_owner_total_expenses(month)
            income['carPayment'] += calc.car_payment(month)
            income['totalExpenses'] += calc.total_expenses(month)

            for key, category in (('directDelivery', DIRECT_DELIVERY), ('cogs', COGS),
                                  ('reimbursedBills', REIMBURSED_BILLS)):
                for name in category_field_names(category):
                    expenses[key][name] += ledger.value(category, name, month)
            dd_total = ledger.category_total(DIRECT_DELIVERY, month)
            cogs_total = ledger.category_total(COGS, month)
            expenses['totalDirectDelivery'] += dd_total
            expenses['totalCogs'] += cogs_total
            expenses['totalReimbursedBills'] += ledger.category_total(REIMBURSED_BILLS, month)
            expenses['totalOperatingExpenses'] += dd_total + cogs_total

            gla['laborCleaning'] += ledger.value(PARKING_FEE_LABOR, 'laborCleaning', month)
            gla['parkingFee'] += ledger.value(PARKING_FEE_LABOR, 'glaParkingFee', month)
            gla['total'] += ledger.category_total(PARKING_FEE_LABOR, month)

            for name in category_field_names(HISTORY):
                history[name] += ledger.value(HISTORY, name, month)

            totals['carManagementSplit'] += calc.car_management_split(month)
            totals['carOwnerSplit'] += calc.car_owner_split(month)

    totals.update({'income': income, 'expenses': expenses, 'gla': gla, 'history': history})
    return totals
