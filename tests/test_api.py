"""
HTTP API tests
"""
from conftest import TEST_PASSWORD, auth_headers, reload
from database import COMMITTEES, REGISTRATIONS, USERS


def _id(doc):
    return str(doc['_id'])


class TestDiagnostics:

    def test_root(self, client):
        response = client.get('/')
        assert response.status_code == 200
        assert 'FestivoEMS' in response.json()['message']

    def test_database_diagnostic_without_connection(self, client):
        response = client.get('/test')
        assert response.status_code == 200
        assert response.json()['connection_status'] == 'Not Connected'


class TestAuth:

    def test_signup_login_me(self, client):
        payload = {
            'name': 'Priya Nair',
            'email': 'Priya@College.edu',
            'password': 'secret123',
            'college_id': 'CS2022009',
            'year': '2',
        }
        response = client.post('/auth/signup', json=payload)
        assert response.status_code == 201
        data = response.json()
        assert data['user']['role'] == 'student'
        assert data['user']['email'] == 'priya@college.edu'
        assert 'password_hash' not in data['user']

        response = client.post('/auth/login', json={'email': 'priya@college.edu', 'password': 'secret123'})
        assert response.status_code == 200
        token = response.json()['token']

        response = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
        assert response.status_code == 200
        assert response.json()['name'] == 'Priya Nair'

    def test_duplicate_email(self, client, make_user):
        user = make_user()
        payload = {'name': 'X', 'email': user['email'], 'password': 'secret123', 'college_id': 'A1', 'year': '1'}
        assert client.post('/auth/signup', json=payload).status_code == 409

    def test_short_password(self, client):
        payload = {'name': 'X', 'email': 'x@college.edu', 'password': '123', 'college_id': 'A1', 'year': '1'}
        assert client.post('/auth/signup', json=payload).status_code == 422

    def test_wrong_password(self, client, make_user):
        user = make_user()
        response = client.post('/auth/login', json={'email': user['email'], 'password': 'nope-nope'})
        assert response.status_code == 401
        assert response.json()['detail'] == 'Invalid credentials'

    def test_blocked_user(self, client, make_user):
        user = make_user(is_blocked=True)
        response = client.post('/auth/login', json={'email': user['email'], 'password': TEST_PASSWORD})
        assert response.status_code == 403
        assert client.get('/auth/me', headers=auth_headers(user)).status_code == 403

    def test_missing_token(self, client):
        response = client.get('/auth/me')
        assert response.status_code == 401
        assert response.json()['detail'] == 'No token, authorization denied'

    def test_garbage_token(self, client):
        response = client.get('/auth/me', headers={'Authorization': 'Bearer not-a-jwt'})
        assert response.status_code == 401


class TestAdminUsers:

    def test_assign_member_role(self, client, database, admin_user, make_user, make_committee):
        user, committee = make_user(), make_committee()
        response = client.put(
            f'/admin/users/{_id(user)}/role',
            json={'role': 'member', 'committee_id': _id(committee)},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert response.json()['role'] == 'member'
        assert _id(user) in reload(database, COMMITTEES, committee)['member_ids']

        response = client.get(f'/admin/users/{_id(user)}/consistency', headers=auth_headers(admin_user))
        assert response.json() == {'user_id': _id(user), 'consistent': True, 'violations': []}

    def test_member_role_without_committee(self, client, admin_user, make_user):
        response = client.put(
            f"/admin/users/{_id(make_user())}/role", json={'role': 'member'}, headers=auth_headers(admin_user)
        )
        assert response.status_code == 400
        assert response.json()['detail'] == 'Committee ID required for member role'

    def test_unknown_fields_rejected(self, client, admin_user, make_user):
        response = client.put(
            f"/admin/users/{_id(make_user())}/role",
            json={'role': 'student', 'committee': 'x'},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 422

    def test_invalid_role_rejected(self, client, admin_user, make_user):
        response = client.put(
            f"/admin/users/{_id(make_user())}/role", json={'role': 'judge'}, headers=auth_headers(admin_user)
        )
        assert response.status_code == 422

    def test_non_admin_forbidden(self, client, make_user):
        coordinator = make_user(role='coordinator')
        response = client.put(
            f"/admin/users/{_id(make_user())}/role", json={'role': 'admin'}, headers=auth_headers(coordinator)
        )
        assert response.status_code == 403

    def test_list_users_shows_committees(self, client, admin_user, make_user, make_committee):
        user, committee = make_user(), make_committee()
        client.post(
            f'/admin/committees/{_id(committee)}/coordinators',
            json={'user_id': _id(user)},
            headers=auth_headers(admin_user),
        )
        response = client.get('/admin/users', headers=auth_headers(admin_user))
        assert response.status_code == 200
        listed = {u['id']: u for u in response.json()}
        assert listed[_id(user)]['coordinator_of'] == [{'id': _id(committee), 'name': committee['name']}]
        assert listed[_id(user)]['member_of'] == []

    def test_block_and_delete(self, client, database, admin_user, make_user):
        user = make_user()
        response = client.put(
            f'/admin/users/{_id(user)}/block', json={'is_blocked': True}, headers=auth_headers(admin_user)
        )
        assert response.json()['is_blocked'] is True

        response = client.delete(f'/admin/users/{_id(user)}', headers=auth_headers(admin_user))
        assert response.status_code == 200
        assert database[USERS].find_one({'_id': user['_id']}) is None

    def test_admin_adds_and_removes_member(self, client, database, admin_user, make_user, make_committee):
        user, committee = make_user(), make_committee()

        response = client.post(
            f'/admin/committees/{_id(committee)}/members',
            json={'user_id': _id(user)},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert response.json()['member_ids'] == [_id(user)]
        assert reload(database, USERS, user)['role'] == 'member'

        response = client.delete(
            f'/admin/committees/{_id(committee)}/members/{_id(user)}', headers=auth_headers(admin_user)
        )
        assert response.status_code == 200
        assert response.json()['member_ids'] == []
        user = reload(database, USERS, user)
        assert user['role'] == 'student'
        assert user.get('committee_id') is None

    def test_create_committee_with_invalid_member(self, client, database, admin_user, make_user, make_committee):
        student, existing = make_user(), make_user()
        client.post(
            f'/admin/committees/{_id(make_committee())}/members',
            json={'user_id': _id(existing)},
            headers=auth_headers(admin_user),
        )

        response = client.post(
            '/committees',
            json={'name': 'Technical', 'coordinator_ids': [_id(student)], 'member_ids': [_id(existing)]},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 400
        assert database[COMMITTEES].find_one({'name': 'Technical'}) is None
        assert reload(database, USERS, student)['role'] == 'student'

    def test_cannot_delete_self(self, client, admin_user):
        response = client.delete(f'/admin/users/{_id(admin_user)}', headers=auth_headers(admin_user))
        assert response.status_code == 400


class TestCoordinatorRoutes:

    def _make_coordinator(self, client, admin_user, make_user, committee):
        user = make_user()
        response = client.post(
            f'/admin/committees/{_id(committee)}/coordinators',
            json={'user_id': _id(user)},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert response.json()['user']['role'] == 'coordinator'
        return user

    def test_add_and_remove_member(self, client, database, admin_user, make_user, make_committee):
        committee = make_committee()
        coordinator = self._make_coordinator(client, admin_user, make_user, committee)
        student = make_user()
        headers = auth_headers(coordinator)

        available = client.get(f'/coordinator/{_id(committee)}/members/available', headers=headers).json()
        assert _id(student) in [s['id'] for s in available]

        response = client.post(f'/coordinator/{_id(committee)}/members', json={'user_id': _id(student)}, headers=headers)
        assert response.status_code == 200
        assert _id(student) in response.json()['member_ids']
        assert reload(database, USERS, student)['role'] == 'member'

        response = client.post(f'/coordinator/{_id(committee)}/members', json={'user_id': _id(student)}, headers=headers)
        assert response.status_code == 400

        response = client.delete(f'/coordinator/{_id(committee)}/members/{_id(student)}', headers=headers)
        assert response.status_code == 200
        assert reload(database, USERS, student)['role'] == 'student'

    def test_other_committee_forbidden(self, client, admin_user, make_user, make_committee):
        own, other = make_committee(), make_committee()
        coordinator = self._make_coordinator(client, admin_user, make_user, own)

        response = client.post(
            f'/coordinator/{_id(other)}/members', json={'user_id': _id(make_user())}, headers=auth_headers(coordinator)
        )
        assert response.status_code == 403

    def test_coordinator_without_committee(self, client, make_user):
        response = client.get('/coordinator/dashboard', headers=auth_headers(make_user(role='coordinator')))
        assert response.status_code == 403
        assert response.json()['detail'] == 'Coordinator access required'

    def test_dashboard(self, client, admin_user, make_user, make_committee, make_event):
        committee = make_committee()
        make_event(committee, title='Robo Wars')
        coordinator = self._make_coordinator(client, admin_user, make_user, committee)

        response = client.get('/coordinator/dashboard', headers=auth_headers(coordinator))
        assert response.status_code == 200
        data = response.json()
        assert data['total_events'] == 1
        assert data['events'][0]['title'] == 'Robo Wars'


class TestEventsAndParticipation:

    def test_create_and_list_event(self, client, database, admin_user, make_committee):
        committee = make_committee()
        payload = {
            'title': 'Treasure Hunt',
            'description': 'Campus-wide hunt',
            'committee_id': _id(committee),
            'date_time': '2030-04-02T09:30:00Z',
            'venue': 'Main Gate',
            'fee': 50,
            'packages': [{'name': 'Team pass', 'price': 120}],
            'is_group': True,
            'max_group_size': 4,
        }
        response = client.post('/events', json=payload, headers=auth_headers(admin_user))
        assert response.status_code == 201
        event = response.json()
        assert event['packages'][0]['id']
        assert event['id'] in reload(database, COMMITTEES, committee)['assigned_event_ids']

        listed = client.get('/events').json()
        assert [e['title'] for e in listed] == ['Treasure Hunt']
        assert listed[0]['committee']['id'] == _id(committee)

    def test_register_verify_and_mark(self, client, database, make_user, packaged_event):
        student, member = make_user(), make_user(role='member')

        response = client.post(f"/events/{_id(packaged_event)}/register", json={}, headers=auth_headers(student))
        assert response.status_code == 201
        token = response.json()['qr_code']

        assert client.post('/verification/verify', json={'qr_code': token}, headers=auth_headers(student)).status_code == 403

        response = client.post('/verification/verify', json={'qr_code': token}, headers=auth_headers(member))
        assert response.status_code == 200
        registration_id = response.json()['id']

        mark = {'registration_id': registration_id, 'participant_id': _id(student), 'status': 'present'}
        assert client.post('/verification/attendance', json=mark, headers=auth_headers(member)).status_code == 201
        mark['status'] = 'absent'
        response = client.post('/verification/attendance', json=mark, headers=auth_headers(member))
        assert response.status_code == 200
        assert response.json()['status'] == 'absent'

        records = client.get(f'/verification/attendance/{registration_id}', headers=auth_headers(member)).json()
        assert len(records) == 1

    def test_score_not_a_number(self, client, make_user, packaged_event):
        student, member = make_user(), make_user(role='member')
        registration = client.post(
            f"/events/{_id(packaged_event)}/register", json={}, headers=auth_headers(student)
        ).json()

        body = '{"registration_id": "%s", "participant_id": "%s", "score": NaN}' % (registration['id'], _id(student))
        response = client.post(
            '/scores', content=body, headers={**auth_headers(member), 'Content-Type': 'application/json'}
        )
        assert response.status_code == 400
        assert response.json()['detail'] == 'Score must be between 0 and 100'

    def test_duplicate_registration(self, client, make_user, packaged_event):
        student = make_user()
        client.post(f"/events/{_id(packaged_event)}/register", json={}, headers=auth_headers(student))
        response = client.post(f"/events/{_id(packaged_event)}/register", json={}, headers=auth_headers(student))
        assert response.status_code == 409

    def test_own_registrations_only(self, client, make_user):
        student, other = make_user(), make_user()
        response = client.get(f'/users/{_id(other)}/registrations', headers=auth_headers(student))
        assert response.status_code == 403

    def test_public_scoreboard(self, client, packaged_event):
        response = client.get(f"/scores/event/{_id(packaged_event)}")
        assert response.status_code == 200
        assert response.json() == []

    def test_participant_export(self, client, database, admin_user, make_user, packaged_event):
        student = make_user(name='Ishaan Verma')
        client.post(f"/events/{_id(packaged_event)}/register", json={}, headers=auth_headers(student))
        assert database[REGISTRATIONS].count_documents({}) == 1

        response = client.get('/admin/export/participants', headers=auth_headers(admin_user))
        assert response.status_code == 200
        assert response.headers['content-type'].startswith('text/csv')
        assert 'attachment' in response.headers['content-disposition']
        lines = response.text.strip().splitlines()
        assert lines[0].startswith('Event Title,Event Date')
        assert 'Ishaan Verma' in lines[1]
