from conftest import make_application
from spraylog.db.models import Chemical, Customer
from spraylog.db.repositories import (
    ApplicationRepository,
    ChemicalRepository,
    CompanyRepository,
    CustomerRepository,
    NotificationLogRepository,
    UserRepository,
)


def test_lookups_are_company_scoped(db_session, company, other_company, applicator, customer, chemical):
    app = make_application(db_session, company, applicator, customer, chemical)

    assert CompanyRepository(db_session).get(company.id) is company
    assert CustomerRepository(db_session).get(company.id, customer.id) is customer
    assert CustomerRepository(db_session).get(other_company.id, customer.id) is None
    assert UserRepository(db_session).get(other_company.id, applicator.id) is None
    assert ApplicationRepository(db_session).get(company.id, app.id) is app
    assert ApplicationRepository(db_session).get(other_company.id, app.id) is None
    assert ApplicationRepository(db_session).list(other_company.id) == []


def test_shared_chemicals_visible_to_every_company(db_session, company, other_company, chemical):
    private = Chemical(company_id=company.id, name="House blend")
    db_session.add(private)
    db_session.commit()

    repo = ChemicalRepository(db_session)
    assert repo.get(other_company.id, chemical.id) is chemical
    assert repo.get(company.id, private.id) is private
    assert repo.get(other_company.id, private.id) is None


def test_application_list_filters(db_session, company, applicator, customer, chemical):
    other_customer = Customer(company_id=company.id, name="Birch Lane")
    db_session.add(other_customer)
    db_session.commit()
    mine = make_application(db_session, company, applicator, customer, chemical)
    make_application(db_session, company, applicator, other_customer, chemical)

    listed = ApplicationRepository(db_session).list(company.id, customer_id=customer.id)
    assert [a.id for a in listed] == [mine.id]
    assert len(ApplicationRepository(db_session).list(company.id, applicator_id=applicator.id)) == 2


def test_notification_lookup_by_provider_message_id(db_session, company, applicator, customer, chemical, provider):
    from spraylog.notification.dispatcher import NotificationDispatcher

    app = make_application(db_session, company, applicator, customer, chemical)
    entry = NotificationDispatcher(provider).dispatch(db_session, app, customer)

    repo = NotificationLogRepository(db_session)
    assert repo.get_by_provider_message_id(entry.provider_message_id) is entry
    assert repo.get_by_provider_message_id("missing") is None
    assert repo.list(company.id, status="sent") == [entry]
    assert repo.list(company.id, status="failed") == []


def test_notification_list_by_customer(db_session, company, applicator, customer, chemical, provider):
    from spraylog.notification.dispatcher import NotificationDispatcher

    neighbour = Customer(company_id=company.id, name="Birch Lane", email="office@birchlane.example")
    db_session.add(neighbour)
    db_session.commit()
    dispatcher = NotificationDispatcher(provider)
    mine_app = make_application(db_session, company, applicator, customer, chemical)
    their_app = make_application(db_session, company, applicator, neighbour, chemical)
    mine = dispatcher.dispatch(db_session, mine_app, customer)
    theirs = dispatcher.dispatch(db_session, their_app, neighbour)

    repo = NotificationLogRepository(db_session)
    assert repo.list(company.id, customer_id=customer.id) == [mine]
    assert repo.list(company.id, customer_id=neighbour.id, status="sent") == [theirs]
    assert len(repo.list(company.id)) == 2
