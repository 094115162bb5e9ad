import pytest

import earnings
from earnings import (COGS, DIRECT_DELIVERY, INCOME, PARKING_FEE_LABOR, REIMBURSED_BILLS,
                      EarningsCalculator, MonthSetting, YearLedger)


def ledger_with(year, cells, settings=None):
    values = {(category, field, month): value for (category, field, month), value in cells.items()}
    return YearLedger(year, values, settings)


# ---------------------------------------------------------------------------
# Negative balance carry-over

def test_carry_over_is_zero_for_first_ledger_year():
    ledger = ledger_with(2019, {(COGS, 'carPayment', 1): 900})
    calc = EarningsCalculator(ledger)
    assert all(calc.negative_balance_carry_over(m) == 0 for m in earnings.MONTH_NUMBERS)


def test_carry_over_accumulates_deficit_in_50_mode():
    ledger = ledger_with(2021, {
        (INCOME, 'rentalIncome', 1): 100,
        (COGS, 'carPayment', 1): 300,
    })
    calc = EarningsCalculator(ledger)
    assert calc.negative_balance_carry_over(1) == 0
    assert calc.negative_balance_carry_over(2) == -200
    # An empty month passes the deficit along unchanged.
    assert calc.negative_balance_carry_over(3) == -200


def test_carry_over_is_never_positive():
    ledger = ledger_with(2021, {
        (INCOME, 'rentalIncome', 1): 100,
        (COGS, 'carPayment', 1): 300,
        (INCOME, 'rentalIncome', 2): 500,
    })
    calc = EarningsCalculator(ledger)
    assert calc.negative_balance_carry_over(2) == -200
    assert calc.negative_balance_carry_over(3) == 0
    for month in earnings.MONTH_NUMBERS:
        assert calc.negative_balance_carry_over(month) <= 0


def test_carry_over_uses_mode_of_target_month():
    cells = {
        (INCOME, 'rentalIncome', 1): 100,
        (INCOME, 'milesIncome', 1): 20,
        (INCOME, 'smokingFines', 1): 10,
        (COGS, 'carPayment', 1): 300,
        (PARKING_FEE_LABOR, 'laborCleaning', 1): 5,
    }
    fifty = EarningsCalculator(ledger_with(2021, cells))
    seventy = EarningsCalculator(ledger_with(2021, cells, {2: MonthSetting(mode=70)}))

    assert fifty.negative_balance_carry_over(2) == pytest.approx(100 - 30 - 300)
    # miles + 10% of smoking - COGS - parking/labor + January owner share of (rental - other income)
    assert seventy.negative_balance_carry_over(2) == pytest.approx(20 + 1 - 300 - 5 + 70 * 0.5)


def test_january_carries_over_from_previous_december():
    previous = ledger_with(2021, {(COGS, 'carPayment', 12): 400})
    calc = EarningsCalculator(ledger_with(2022, {}), previous=previous)
    assert calc.negative_balance_carry_over(1) == -400


def test_previous_year_chain_defaults_to_fifty_mode():
    previous = ledger_with(2021, {
        (INCOME, 'rentalIncome', 11): 100,
        (INCOME, 'milesIncome', 11): 20,
        (COGS, 'carPayment', 11): 300,
    }, {12: MonthSetting(mode=70)})

    default = EarningsCalculator(ledger_with(2022, {}), previous=previous)
    stored = EarningsCalculator(ledger_with(2022, {}), previous=previous,
                                previous_year_modes=earnings.PREVIOUS_YEAR_MODES_STORED)

    assert default.previous_year_carry_over(12) == pytest.approx(-220)
    assert stored.previous_year_carry_over(12) == pytest.approx(20 - 300 + 80 * 0.5)
    assert default.negative_balance_carry_over(1) == pytest.approx(-220)
    assert stored.negative_balance_carry_over(1) == pytest.approx(-240)


def test_previous_year_chain_starts_at_zero_in_january():
    previous = ledger_with(2021, {(COGS, 'carPayment', 1): 999})
    calc = EarningsCalculator(ledger_with(2022, {}), previous=previous)
    assert calc.previous_year_carry_over(1) == 0
    assert calc.previous_year_carry_over(2) == -999


def test_missing_previous_year_reads_as_empty():
    calc = EarningsCalculator(ledger_with(2022, {}))
    assert calc.previous.year == 2021
    assert calc.negative_balance_carry_over(1) == 0


def test_unknown_previous_year_policy_is_rejected():
    with pytest.raises(ValueError):
        EarningsCalculator(ledger_with(2022, {}), previous_year_modes='guess')


def test_month_out_of_range_is_rejected():
    calc = EarningsCalculator(ledger_with(2022, {}))
    with pytest.raises(ValueError):
        calc.negative_balance_carry_over(13)
    with pytest.raises(ValueError):
        calc.car_owner_split(0)


# ---------------------------------------------------------------------------
# Splits

def test_fifty_mode_splits_before_ski_rack_rules():
    ledger = ledger_with(2024, {
        (INCOME, 'rentalIncome', 3): 1000,
        (INCOME, 'deliveryIncome', 3): 100,
        (COGS, 'carPayment', 3): 200,
        (REIMBURSED_BILLS, 'electricReimbursed', 3): 50,
    })
    calc = EarningsCalculator(ledger)
    # delivery - reimbursed + (rental - delivery - COGS) * 50%
    assert calc.car_management_split(3) == pytest.approx(50 + 350)
    assert calc.car_owner_split(3) == pytest.approx(350)


def test_seventy_mode_owner_carries_expenses():
    ledger = ledger_with(2024, {
        (INCOME, 'rentalIncome', 3): 1000,
        (COGS, 'carPayment', 3): 200,
    }, {3: MonthSetting(mode=70)})
    calc = EarningsCalculator(ledger)
    assert calc.split_percents(3) == (0.3, 0.7)
    assert calc.car_owner_split(3) == pytest.approx(-200 + 700)
    assert calc.car_management_split(3) == pytest.approx(800 * 0.3)


def test_stored_split_percentages_override_mode_default():
    ledger = ledger_with(2024, {
        (INCOME, 'rentalIncome', 3): 1000,
        (COGS, 'carPayment', 3): 200,
    }, {3: MonthSetting(mode=50, management_split=40, owner_split=60)})
    calc = EarningsCalculator(ledger)
    assert calc.car_owner_split(3) == pytest.approx(480)


def test_splits_are_never_negative():
    ledger = ledger_with(2024, {(COGS, 'carPayment', 3): 5000})
    calc = EarningsCalculator(ledger)
    assert calc.car_owner_split(3) == 0
    assert calc.car_management_split(3) == 0


@pytest.mark.parametrize('owner, management, car_owner', [
    (earnings.SKI_RACKS_GLA, 550, 450),
    (earnings.SKI_RACKS_CAR_OWNER, 450, 550),
])
def test_ski_rack_income_follows_rack_owner(owner, management, car_owner):
    ledger = ledger_with(2026, {
        (INCOME, 'rentalIncome', 5): 1000,
        (INCOME, 'skiRacksIncome', 5): 100,
    }, {5: MonthSetting(mode=50, ski_racks_owner=owner)})
    calc = EarningsCalculator(ledger)
    assert calc.car_management_split(5) == pytest.approx(management)
    assert calc.car_owner_split(5) == pytest.approx(car_owner)


def test_owner_split_is_zero_before_first_ledger_year():
    ledger = ledger_with(2018, {(INCOME, 'rentalIncome', 3): 1000})
    assert EarningsCalculator(ledger).car_owner_split(3) == 0


def test_dynamic_subcategories_count_towards_category_totals():
    ledger = ledger_with(2024, {(DIRECT_DELIVERY, 'laborDelivery', 2): 10})
    ledger.add_subcategory(DIRECT_DELIVERY, 'Car wash', {2: 15})
    assert ledger.category_total(DIRECT_DELIVERY, 2) == 25
    calc = EarningsCalculator(ledger)
    assert calc.car_owner_total_expenses(2) == pytest.approx(12.5)
    assert calc.car_management_total_expenses(2) == pytest.approx(12.5)


def test_default_split_per_mode():
    assert earnings.default_split(50) == (50.0, 50.0)
    assert earnings.default_split(70) == (30.0, 70.0)
    assert MonthSetting(mode=70).split_percents() == (30.0, 70.0)
    assert MonthSetting(mode=99).mode == 50


def test_to_number_treats_junk_as_zero():
    assert earnings.to_number(None) == 0
    assert earnings.to_number('') == 0
    assert earnings.to_number('abc') == 0
    assert earnings.to_number(float('nan')) == 0
    assert earnings.to_number('12.5') == 12.5


# ---------------------------------------------------------------------------
# Earnings table and totals

def test_earnings_table_rows_carry_year_end_figures():
    ledger = ledger_with(2024, {
        (INCOME, 'rentalIncome', 1): 100,
        (INCOME, 'rentalIncome', 2): 300,
        (COGS, 'tires', 2): 40,
    })
    sections = earnings.earnings_table(EarningsCalculator(ledger))
    keys = [s['key'] for s in sections]
    assert keys == ['management_owner_split', INCOME, DIRECT_DELIVERY, COGS,
                    PARKING_FEE_LABOR, REIMBURSED_BILLS, earnings.HISTORY]

    income = sections[1]
    rental = next(r for r in income['rows'] if r['label'] == 'Rental Income')
    assert rental['yearEndRecon'] == 400
    assert rental['yearEndReconSplit'] == 200
    assert rental['total'] == 400

    cogs_total = sections[3]['rows'][-1]
    assert cogs_total['isTotal']
    assert cogs_total['values'][1] == 40


def test_summarize_totals_adds_up_car_years():
    first = EarningsCalculator(ledger_with(2024, {
        (INCOME, 'rentalIncome', 3): 1000,
        (DIRECT_DELIVERY, 'laborDelivery', 3): 100,
        (PARKING_FEE_LABOR, 'glaParkingFee', 3): 30,
        (earnings.HISTORY, 'daysRented', 3): 12,
    }))
    second = EarningsCalculator(ledger_with(2024, {
        (INCOME, 'rentalIncome', 4): 500,
        (COGS, 'tires', 4): 50,
    }))
    totals = earnings.summarize_totals([first, second])

    assert totals['carYears'] == 2
    assert totals['income']['rentalIncome'] == 1500
    assert totals['expenses']['totalDirectDelivery'] == 100
    assert totals['expenses']['totalCogs'] == 50
    assert totals['expenses']['totalOperatingExpenses'] == 150
    assert totals['gla']['parkingFee'] == 30
    assert totals['history']['daysRented'] == 12
    assert totals['carOwnerSplit'] == pytest.approx(450 + 225)


def test_summarize_totals_of_nothing_is_zero():
    totals = earnings.summarize_totals([])
    assert totals['carYears'] == 0
    assert totals['carManagementSplit'] == 0
    assert totals['income']['rentalIncome'] == 0


def test_ledger_from_payload_accepts_string_month_keys():
    ledger = YearLedger.from_payload(2024, {
        INCOME: [{'month': 2, 'rentalIncome': '250'}],
        'monthModes': {'2': 70},
        'skiRacksOwner': {'2': 'CAR_OWNER'},
        'dynamicSubcategories': {COGS: [{'name': 'Detailing', 'values': [{'month': 2, 'value': 20}]}]},
    })
    assert ledger.value(INCOME, 'rentalIncome', 2) == 250
    assert ledger.mode(2) == 70
    assert ledger.setting(2).ski_racks_owner == 'CAR_OWNER'
    assert ledger.category_total(COGS, 2) == 20
    assert ledger.mode(3) == 50


def test_management_split_from_2026_without_ski_racks():
    ledger = ledger_with(2026, {
        (INCOME, 'rentalIncome', 5): 1000,
        (INCOME, 'smokingFines', 5): 100,
        (INCOME, 'deliveryIncome', 5): 50,
        (REIMBURSED_BILLS, 'gasReimbursed', 5): 20,
    })
    calc = EarningsCalculator(ledger)
    # delivery + 90% of smoking - reimbursed + (rental - delivery - smoking) * 50%
    assert calc.car_management_split(5) == pytest.approx(50 + 90 - 20 + 850 * 0.5)


def test_negative_ski_income_uses_standard_management_formula():
    ledger = ledger_with(2026, {
        (INCOME, 'rentalIncome', 5): 1000,
        (INCOME, 'skiRacksIncome', 5): -50,
        (INCOME, 'smokingFines', 5): 100,
    })
    calc = EarningsCalculator(ledger)
    assert calc.car_management_split(5) == pytest.approx(100 + 900 * 0.5)


@pytest.mark.parametrize('owner, expected', [
    (earnings.SKI_RACKS_CAR_OWNER, -200 + 100 + 900 * 0.7),
    (earnings.SKI_RACKS_GLA, -200 + 900 * 0.7),
])
def test_seventy_mode_owner_split_with_ski_racks(owner, expected):
    ledger = ledger_with(2026, {
        (INCOME, 'rentalIncome', 5): 1000,
        (INCOME, 'skiRacksIncome', 5): 100,
        (COGS, 'carPayment', 5): 200,
    }, {5: MonthSetting(mode=70, ski_racks_owner=owner)})
    calc = EarningsCalculator(ledger)
    assert calc.car_owner_split(5) == pytest.approx(expected)


def test_fifty_mode_owner_shares_extra_income_before_2026():
    ledger = ledger_with(2024, {
        (INCOME, 'rentalIncome', 3): 1000,
        (INCOME, 'milesIncome', 3): 50,
        (INCOME, 'childSeatIncome', 3): 40,
        (INCOME, 'coolersIncome', 3): 20,
        (INCOME, 'insuranceWreckIncome', 3): 30,
        (INCOME, 'otherIncome', 3): 10,
    })
    calc = EarningsCalculator(ledger)
    # miles + extras * 50% + (rental - other income) * 50%
    assert calc.car_owner_split(3) == pytest.approx(50 + 100 * 0.5 + 850 * 0.5)


def test_january_2020_reads_december_2019_only():
    previous = ledger_with(2019, {
        (COGS, 'carPayment', 11): 1000,
        (COGS, 'carPayment', 12): 400,
    })
    calc = EarningsCalculator(ledger_with(2020, {}), previous=previous)
    assert calc.previous_year_carry_over(12) == 0
    assert calc.negative_balance_carry_over(1) == -400
    assert EarningsCalculator(previous).negative_balance_carry_over(12) == 0


def test_seventy_mode_owner_split_absorbs_carry_over():
    ledger = ledger_with(2024, {
        (COGS, 'carPayment', 2): 300,
        (INCOME, 'rentalIncome', 3): 1000,
    }, {3: MonthSetting(mode=70)})
    calc = EarningsCalculator(ledger)
    assert calc.negative_balance_carry_over(3) == pytest.approx(-300)
    assert calc.car_owner_split(3) == pytest.approx(-300 + 1000 * 0.7)
