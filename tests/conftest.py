"""
FestivoEMS - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from faker import Faker
from fastapi.testclient import TestClient

# Set testing environment
os.environ.pop('DATABASE_URL', None)
os.environ.pop('MONGODB_URI', None)
os.environ['JWT_SECRET'] = 'test-jwt-secret-key-for-testing'
os.environ['LOG_DIR'] = ''

from main import app
from auth import create_access_token, hash_password
from database import COMMITTEES, EVENTS, USERS, create_document, ensure_indexes, find_by_id, get_db
from schemas import Committee, Event, EventPackage, User

fake = Faker()

TEST_PASSWORD = 'testpassword123'
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture
def database():
    """A fresh in-memory database for each test"""
    db = mongomock.MongoClient()['festivo_test']
    ensure_indexes(db)
    return db


@pytest.fixture
def client(database):
    """Create test client with database override"""
    app.dependency_overrides[get_db] = lambda: database
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(database):
    """Factory for users with an optional role"""
    def _make(role='student', **fields):
        user = User(
            name=fields.pop('name', fake.name()),
            email=fields.pop('email', fake.unique.email()),
            password_hash=TEST_PASSWORD_HASH,
            role=role,
            college_id=fields.pop('college_id', fake.bothify('CS####???').upper()),
            year=fields.pop('year', str(fake.random_int(1, 4))),
            **fields
        )
        user_id = create_document(database, USERS, user)
        return find_by_id(database, USERS, user_id, 'User')
    return _make


@pytest.fixture
def admin_user(make_user):
    return make_user(role='admin')


@pytest.fixture
def make_committee(database):
    def _make(**fields):
        committee = Committee(name=fields.pop('name', fake.unique.company()), **fields)
        committee_id = create_document(database, COMMITTEES, committee)
        return find_by_id(database, COMMITTEES, committee_id, 'Committee')
    return _make


@pytest.fixture
def make_event(database):
    """Factory for events attached to a committee's assigned events"""
    def _make(committee, **fields):
        event = Event(
            title=fields.pop('title', fake.catch_phrase()),
            description=fields.pop('description', fake.sentence()),
            committee_id=str(committee['_id']),
            date_time=fields.pop('date_time', datetime(2030, 3, 1, 10, 0, tzinfo=timezone.utc)),
            venue=fields.pop('venue', fake.city()),
            **fields
        )
        event_id = create_document(database, EVENTS, event)
        database[COMMITTEES].update_one({'_id': committee['_id']}, {'$addToSet': {'assigned_event_ids': event_id}})
        return find_by_id(database, EVENTS, event_id, 'Event')
    return _make


@pytest.fixture
def packaged_event(make_committee, make_event):
    committee = make_committee()
    return make_event(
        committee,
        fee=200,
        packages=[EventPackage(id='early', name='Early bird', price=150)],
        date_time=datetime(2030, 3, 1, 10, 0, tzinfo=timezone.utc) + timedelta(days=1),
    )


def auth_headers(user) -> dict:
    """Generate authentication headers for a user document"""
    token = create_access_token(str(user['_id']), user.get('role', 'student'))
    return {'Authorization': f'Bearer {token}'}


def reload(database, collection, doc):
    return database[collection].find_one({'_id': doc['_id']})
