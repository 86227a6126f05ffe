"""CLI command tests (flask system/users/stock/loyalty)."""

from dukapos.models import Product, Store, User
from dukapos.services import loyalty_service


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=['system', 'init', '--admin-password', 'Sup3rSecret!'])
    assert result.exit_code == 0, result.output
    assert 'Created admin user' in result.output

    again = runner.invoke(args=['system', 'init'])
    assert again.exit_code == 0
    assert 'already exists' in again.output

    assert db_session.query(Store).filter_by(code='MAIN').count() == 1
    assert db_session.query(User).filter_by(username='admin', role='admin').count() == 1


def test_users_create(app, store):
    result = app.test_cli_runner().invoke(args=[
        'users', 'create',
        '--username', 'wanjiku',
        '--password', 'Counter!2026',
        '--role', 'manager',
        '--store-id', str(store.id),
    ])
    assert result.exit_code == 0, result.output
    assert "role 'manager'" in result.output


def test_users_create_unknown_store(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        'users', 'create', '--username', 'ghost', '--password', 'Counter!2026', '--store-id', '404',
    ])
    assert result.exit_code != 0
    assert 'not found' in result.output


def test_stock_verify(app, db_session, make_product):
    product = make_product()
    runner = app.test_cli_runner()

    result = runner.invoke(args=['stock', 'verify'])
    assert result.exit_code == 0, result.output
    assert 'PASS 1 product(s) reconcile' in result.output

    # Edit behind the ledger's back
    db_session.query(Product).filter_by(id=product.id).update({'quantity': 3})
    db_session.commit()

    result = runner.invoke(args=['stock', 'verify', '--product-id', str(product.id)])
    assert result.exit_code != 0
    assert 'MISMATCH' in result.output


def test_loyalty_verify(app, db_session, make_customer):
    customer = make_customer()
    loyalty_service.accrue(customer.id, 25000)
    db_session.commit()

    result = app.test_cli_runner().invoke(args=['loyalty', 'verify'])
    assert result.exit_code == 0, result.output
    assert 'PASS 1 customer balance(s) reconcile' in result.output
