from fleet_admin import Car, Client, Payment


def test_dashboard_counts(client, car):
    response = client.get('/')
    assert response.status_code == 200
    assert b'1 in the fleet' in response.data


def test_add_client_from_form(client, db):
    response = client.post('/clients/add', data={'firstName': 'Lee', 'lastName': 'Park',
                                                 'email': 'lee@example.com'})
    assert response.status_code == 302
    assert Client.query.filter_by(email='lee@example.com').count() == 1


def test_add_client_form_shows_validation_error(client):
    response = client.post('/clients/add', data={'firstName': 'Lee', 'lastName': '', 'email': 'x'})
    assert response.status_code == 200
    assert b'First and last name are required' in response.data


def test_client_detail_shows_totals(client, owner, car, add_entry):
    add_entry(car, 2024, 3, 'income', 'rentalIncome', 1000)
    response = client.get(f'/clients/{owner.id}?year=2024')
    assert response.status_code == 200
    assert b'Car Owner Split' in response.data
    assert b'500.00' in response.data


def test_client_access_from_detail_page(client, owner, db):
    response = client.post(f'/clients/{owner.id}/access/block')
    assert response.status_code == 302
    db.session.expire_all()
    assert Client.query.get(owner.id).access_status == 'blocked'


def test_add_car_with_bad_vin_rerenders_form(client, owner):
    response = client.post('/cars/add', data={'vin': '123', 'clientId': owner.id})
    assert response.status_code == 200
    assert b'VIN must be 17 characters' in response.data
    assert Car.query.count() == 0


def test_car_pages(client, car):
    assert client.get('/cars').status_code == 200
    assert client.get(f'/cars/{car.id}').status_code == 200
    assert client.get('/cars/999').status_code == 404


def test_income_expense_page_and_cell_edit(client, car):
    page = client.get(f'/cars/{car.id}/income-expense/2024')
    assert page.status_code == 200
    assert b'INCOME AND EXPENSES' in page.data

    response = client.post(f'/cars/{car.id}/income-expense/2024/cell',
                           data={'category': 'income', 'field': 'rentalIncome', 'month': '2', 'value': '300'})
    assert response.status_code == 302
    page = client.get(f'/cars/{car.id}/income-expense/2024')
    assert b'300.00' in page.data


def test_mode_toggle_flashes(client, car):
    response = client.post(f'/cars/{car.id}/income-expense/2024/mode/6', follow_redirects=True)
    assert b'Mode updated successfully' in response.data


def test_earnings_page(client, car, add_entry):
    add_entry(car, 2024, 1, 'income', 'rentalIncome', 1234)
    response = client.get(f'/cars/{car.id}/earnings?year=2024')
    assert response.status_code == 200
    assert b'1,234.00' in response.data
    assert b'YER SPLIT' in response.data


def test_earnings_page_rejects_early_year(client, car):
    response = client.get(f'/cars/{car.id}/earnings?year=2010', follow_redirects=True)
    assert b'Year must be 2019 or later' in response.data


def test_record_payment_from_form(client, car, add_entry):
    add_entry(car, 2024, 3, 'income', 'rentalIncome', 1000)
    response = client.post(f'/payments/add/{car.id}', data={'yearMonth': '2024-03', 'payout': '500',
                                                            'status': 'paid'})
    assert response.status_code == 302
    payment = Payment.query.one()
    assert payment.payable == 500
    assert payment.balance == 0
    assert client.get('/payments').status_code == 200


def test_contract_pages(client, owner):
    response = client.post(f'/clients/{owner.id}/contracts/add', data={'title': 'Agreement'})
    assert response.status_code == 302
    page = client.get('/contracts?status=pending')
    assert b'Agreement' in page.data


def test_banking_form(client, owner):
    response = client.post(f'/clients/{owner.id}/banking/add',
                           data={'bankName': 'First Bank', 'routingNumber': '021000021',
                                 'accountNumber': '123456789'})
    assert response.status_code == 302
    page = client.get(f'/clients/{owner.id}')
    assert b'****6789' in page.data
