from types import SimpleNamespace

import earnings
import income_export
from earnings import COGS, INCOME, EarningsCalculator, MonthSetting, YearLedger


def make_car(**overrides):
    owner = SimpleNamespace(full_name='Dana Reyes', phone='555-0100', email='dana@example.com')
    fields = dict(make_model='Toyota Camry', vin='1HGCM82633A004352', license_plate='ABC123',
                  client=owner, fuel_type='Regular', tire_size=None, oil_type=None,
                  turo_link=None, admin_turo_link=None)
    fields.update(overrides)
    return SimpleNamespace(**fields)


def make_calculator():
    ledger = YearLedger(2024, {
        (INCOME, 'rentalIncome', 3): 1000,
        (COGS, 'carPayment', 3): 200,
    }, {3: MonthSetting(mode=70)})
    return EarningsCalculator(ledger)


def test_csv_starts_with_car_header():
    content = income_export.export_csv(make_car(), make_calculator())
    lines = content.splitlines()
    assert lines[0] == 'CAR NAME,Toyota Camry'
    assert 'OWNER NAME,Dana Reyes' in lines
    assert 'TIRE SIZE,N/A' in lines


def test_csv_lists_month_modes_and_sections():
    content = income_export.export_csv(make_car(), make_calculator())
    assert 'Mode Settings,Jan 2024: 50,Feb 2024: 50,Mar 2024: 70' in content
    for section in earnings.earnings_table(make_calculator()):
        assert f"SECTION,{section['label']}" in content


def test_csv_split_rows_show_percentages():
    content = income_export.export_csv(make_car(), make_calculator())
    owner_row = next(line for line in content.splitlines() if line.startswith('Car Owner Split'))
    # March is a 30:70 month: owner keeps 70% of rental and pays the car payment.
    assert '$500.00 (70%)' in owner_row
    assert '$0.00 (50%)' in owner_row


def test_csv_amounts_have_no_thousands_separator():
    assert income_export._money(1234.5) == '$1234.50'
    content = income_export.export_csv(make_car(), make_calculator())
    rental_row = next(line for line in content.splitlines() if line.startswith('Rental Income'))
    assert '$1000.00' in rental_row
    assert '"' not in rental_row


def test_section_frame_has_year_end_columns():
    section = earnings.earnings_table(make_calculator())[1]
    frame = income_export.section_frame(section, 2024)
    assert list(frame.columns)[:2] == ['Category', 'Jan 2024']
    assert list(frame.columns)[-3:] == ['YER', 'YER SPLIT', 'TOTAL']
    rental = frame[frame['Category'] == 'Rental Income'].iloc[0]
    assert rental['YER'] == '$1000.00'
    assert rental['YER SPLIT'] == '$500.00'


def test_export_filename():
    assert income_export.export_filename(make_car(), 2024, 'csv') == 'Income-Expense-Toyota-Camry-2024.csv'
    assert income_export.export_filename(make_car(make_model=''), 2024, 'json') == 'Income-Expense-Car-2024.json'


def test_json_export_carries_car_info_and_modes():
    ledger = make_calculator().ledger
    document = income_export.export_json(make_car(), ledger)
    assert document['year'] == 2024
    assert document['carInfo']['vin'] == '1HGCM82633A004352'
    assert document['carInfo']['owner']['name'] == 'Dana Reyes'
    assert document['monthModes'][3] == 70
    assert 'monthModes' not in document['data']
    march = document['data'][INCOME][2]
    assert march['month'] == 3
    assert march['rentalIncome'] == 1000


def test_json_export_without_owner():
    document = income_export.export_json(make_car(client=None), YearLedger(2024))
    assert document['carInfo']['owner'] == {'name': '', 'email': None}
