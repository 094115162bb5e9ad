"""CSV and JSON export of a car's income and expense year."""

import io
from datetime import datetime

import pandas as pd

import earnings


def _money(value) -> str:
    return f"${value:.2f}"


def car_header(car):
    owner = car.client
    return [
        ('CAR NAME', car.make_model or 'N/A'),
        ('VIN #', car.vin or 'N/A'),
        ('LICENSE', car.license_plate or 'N/A'),
        ('OWNER NAME', owner.full_name if owner else ''),
        ('CONTACT #', (owner.phone if owner else None) or 'N/A'),
        ('EMAIL', (owner.email if owner else None) or 'N/A'),
        ('FUEL/GAS', car.fuel_type or 'N/A'),
        ('TIRE SIZE', car.tire_size or 'N/A'),
        ('OIL TYPE', car.oil_type or 'N/A'),
        ('TURO LINK', car.turo_link or 'N/A'),
        ('ADMIN TURO LINK', car.admin_turo_link or 'N/A'),
    ]


def section_frame(section, year, percents=None):
    """Turn one earnings table section into a DataFrame of formatted cells.

    ``percents`` maps a row label to twelve split percentages shown next to
    the amount, e.g. ``$120.00 (50%)``.
    """
    columns = ['Category'] + [f"{m} {year}" for m in earnings.MONTHS] + ['YER', 'YER SPLIT', 'TOTAL']
    records = []
    for row in section['rows']:
        cells = []
        row_percents = (percents or {}).get(row['label'])
        for idx, value in enumerate(row['values']):
            cell = _money(value)
            if row_percents:
                cell += f" ({row_percents[idx]:.0f}%)"
            cells.append(cell)
        records.append([row['label']] + cells + [
            _money(row['yearEndRecon']),
            _money(row['yearEndReconSplit']),
            _money(row['total']),
        ])
    return pd.DataFrame(records, columns=columns)


def export_csv(car, calculator) -> str:
    """Render the full car-year as a sectioned CSV document."""
    year = calculator.year
    ledger = calculator.ledger
    buf = io.StringIO()

    header = pd.DataFrame(car_header(car))
    header.to_csv(buf, index=False, header=False)
    buf.write('\n')

    modes = ['Mode Settings'] + [f"{m} {year}: {ledger.mode(i)}"
                                 for i, m in enumerate(earnings.MONTHS, start=1)]
    pd.DataFrame([modes]).to_csv(buf, index=False, header=False)

    split_percents = [ledger.setting(m).split_percents() for m in earnings.MONTH_NUMBERS]
    percents = {
        'Car Management Split': [mgmt for mgmt, _ in split_percents],
        'Car Owner Split': [owner for _, owner in split_percents],
    }
    for section in earnings.earnings_table(calculator):
        buf.write(f"SECTION,{section['label']}\n")
        frame = section_frame(section, year, percents)
        frame.to_csv(buf, index=False)
        buf.write('\n')
    return buf.getvalue()


def export_filename(car, year, extension) -> str:
    name = (car.make_model or 'Car').strip().replace(' ', '-')
    return f"Income-Expense-{name}-{year}.{extension}"


def export_json(car, ledger):
    """Backup document with car info, modes and the raw monthly values."""
    owner = car.client
    payload = ledger.to_payload()
    return {
        'carInfo': {
            'name': car.make_model,
            'vin': car.vin,
            'license': car.license_plate,
            'owner': {
                'name': owner.full_name if owner else '',
                'email': owner.email if owner else None,
            },
        },
        'year': ledger.year,
        'monthModes': payload.pop('monthModes'),
        'data': payload,
        'exportedAt': datetime.utcnow().isoformat(),
    }
