"""
Registration, attendance and scoring tests
"""
import pytest

from database import ATTENDANCE, REGISTRATIONS, SCORES
from errors import ConflictError, InvalidArgumentError, NotFoundError
from registrations import (
    create_registration,
    scoreboard,
    search_registrations,
    upsert_attendance,
    upsert_score,
    user_registrations,
    verify_token,
)
from reports import attendance_rate, committee_report


def _id(doc):
    return str(doc['_id'])


@pytest.fixture
def group_event(make_committee, make_event):
    return make_event(make_committee(), is_group=True, max_group_size=3, fee=300)


class TestCreateRegistration:

    def test_individual_registration(self, database, make_user, packaged_event):
        leader = make_user()
        result = create_registration(database, _id(packaged_event), leader)

        assert result['total_amount'] == 200
        assert result['payment_status'] == 'pending'
        assert result['is_group_registration'] is False
        assert result['qr_code_image'].startswith('data:image/png;base64,')
        stored = database[REGISTRATIONS].find_one({'qr_code': result['qr_code']})
        assert stored['leader_id'] == _id(leader)

    def test_package_price(self, database, make_user, packaged_event):
        result = create_registration(database, _id(packaged_event), make_user(), package_id='early')
        assert result['total_amount'] == 150

    def test_unknown_package(self, database, make_user, packaged_event):
        with pytest.raises(InvalidArgumentError, match='Package not found'):
            create_registration(database, _id(packaged_event), make_user(), package_id='vip')

    def test_group_over_maximum(self, database, make_user, group_event):
        members = [_id(make_user()) for _ in range(3)]
        with pytest.raises(InvalidArgumentError, match='Maximum group size is 3'):
            create_registration(database, _id(group_event), make_user(), members)
        assert database[REGISTRATIONS].count_documents({}) == 0

    def test_group_at_maximum(self, database, make_user, group_event):
        members = [_id(make_user()) for _ in range(2)]
        result = create_registration(database, _id(group_event), make_user(), members)
        assert result['is_group_registration'] is True

    def test_group_members_rejected_for_individual_event(self, database, make_user, packaged_event):
        with pytest.raises(InvalidArgumentError):
            create_registration(database, _id(packaged_event), make_user(), [_id(make_user())])

    def test_unknown_group_member(self, database, make_user, group_event):
        with pytest.raises(InvalidArgumentError, match='not found'):
            create_registration(database, _id(group_event), make_user(), ['c' * 24])

    def test_duplicate_group_members(self, database, make_user, group_event):
        member = _id(make_user())
        with pytest.raises(InvalidArgumentError, match='Duplicate group members'):
            create_registration(database, _id(group_event), make_user(), [member, member])
        assert database[REGISTRATIONS].count_documents({}) == 0

    def test_leader_listed_as_group_member(self, database, make_user, group_event):
        leader = make_user()
        with pytest.raises(InvalidArgumentError, match='Leader cannot'):
            create_registration(database, _id(group_event), leader, [_id(leader)])
        assert database[REGISTRATIONS].count_documents({}) == 0

    def test_duplicate_leader(self, database, make_user, packaged_event):
        leader = make_user()
        create_registration(database, _id(packaged_event), leader)
        with pytest.raises(ConflictError):
            create_registration(database, _id(packaged_event), leader)

    def test_unknown_event(self, database, make_user):
        with pytest.raises(NotFoundError):
            create_registration(database, 'd' * 24, make_user())

    def test_tokens_are_unique(self, database, make_user, packaged_event):
        tokens = {create_registration(database, _id(packaged_event), make_user())['qr_code'] for _ in range(5)}
        assert len(tokens) == 5


class TestVerification:

    def test_verify_token(self, database, make_user, group_event):
        leader, member = make_user(), make_user()
        result = create_registration(database, _id(group_event), leader, [_id(member)])

        found = verify_token(database, result['qr_code'])
        assert found['id'] == result['id']
        assert found['leader']['id'] == _id(leader)
        assert [m['id'] for m in found['group_members']] == [_id(member)]
        assert found['event']['title'] == group_event['title']

    def test_unknown_token(self, database):
        with pytest.raises(NotFoundError, match='Invalid QR code'):
            verify_token(database, 'no-such-token')


class TestAttendance:

    def test_upsert_keeps_single_record(self, database, make_user, packaged_event):
        leader, verifier = make_user(), make_user(role='member')
        registration = create_registration(database, _id(packaged_event), leader)

        first, created = upsert_attendance(database, verifier, registration['id'], _id(leader), 'present')
        assert created is True
        second, created = upsert_attendance(database, verifier, registration['id'], _id(leader), 'absent', 'left early')
        assert created is False

        assert database[ATTENDANCE].count_documents({}) == 1
        assert second['_id'] == first['_id']
        assert second['status'] == 'absent'
        assert second['notes'] == 'left early'

    def test_invalid_status(self, database, make_user, packaged_event):
        leader = make_user()
        registration = create_registration(database, _id(packaged_event), leader)
        with pytest.raises(InvalidArgumentError):
            upsert_attendance(database, make_user(role='member'), registration['id'], _id(leader), 'late')

    def test_participant_must_belong(self, database, make_user, packaged_event):
        registration = create_registration(database, _id(packaged_event), make_user())
        with pytest.raises(InvalidArgumentError, match='not part of this registration'):
            upsert_attendance(database, make_user(role='member'), registration['id'], _id(make_user()), 'present')

    def test_unknown_registration(self, database, make_user):
        with pytest.raises(NotFoundError):
            upsert_attendance(database, make_user(role='member'), 'e' * 24, _id(make_user()), 'present')


class TestScores:

    def test_score_range(self, database, make_user, packaged_event):
        leader = make_user()
        registration = create_registration(database, _id(packaged_event), leader)
        for score in (-1, 100.5, float('nan'), float('inf')):
            with pytest.raises(InvalidArgumentError):
                upsert_score(database, make_user(role='member'), registration['id'], _id(leader), score)
        assert database[SCORES].count_documents({}) == 0

    def test_rescore_overwrites_round(self, database, make_user, packaged_event):
        leader, judge = make_user(), make_user(role='coordinator')
        registration = create_registration(database, _id(packaged_event), leader)

        _, created = upsert_score(database, judge, registration['id'], _id(leader), 70)
        assert created is True
        record, created = upsert_score(database, judge, registration['id'], _id(leader), 85)
        assert created is False
        assert record['score'] == 85
        assert record['round'] == 'final'
        assert database[SCORES].count_documents({}) == 1

    def test_scoreboard_orders_by_average(self, database, make_user, group_event):
        judge = make_user(role='admin')
        leader, member = make_user(), make_user()
        registration = create_registration(database, _id(group_event), leader, [_id(member)])

        upsert_score(database, judge, registration['id'], _id(leader), 60, round='prelims')
        upsert_score(database, judge, registration['id'], _id(leader), 80)
        upsert_score(database, judge, registration['id'], _id(member), 90)

        board = scoreboard(database, _id(group_event))
        assert [entry['participant']['id'] for entry in board] == [_id(member), _id(leader)]
        assert board[1]['average_score'] == 70
        assert len(board[1]['scores']) == 2

    def test_empty_scoreboard(self, database, group_event):
        assert scoreboard(database, _id(group_event)) == []


class TestListing:

    def test_user_registrations_include_qr(self, database, make_user, packaged_event):
        leader = make_user()
        create_registration(database, _id(packaged_event), leader)

        registrations = user_registrations(database, _id(leader))
        assert len(registrations) == 1
        assert registrations[0]['event']['id'] == _id(packaged_event)
        assert registrations[0]['qr_code_image'].startswith('data:image/png')

    def test_search_scope_and_query(self, database, make_user, make_committee, make_event):
        committee = make_committee()
        hackathon = make_event(committee, title='Hack Night')
        quiz = make_event(committee, title='Quiz Bowl')
        alice = make_user(name='Alice Fernandes', email='alice@example.org')
        create_registration(database, _id(hackathon), alice)
        create_registration(database, _id(quiz), make_user(name='Bob Kumar', email='bob.kumar@example.org'))

        assert len(search_registrations(database, [_id(hackathon), _id(quiz)])) == 2
        assert len(search_registrations(database, [_id(hackathon)])) == 1
        found = search_registrations(database, q='alice')
        assert [r['leader']['id'] for r in found] == [_id(alice)]
        assert search_registrations(database, [_id(hackathon)], event_id=_id(quiz)) == []


class TestReports:

    def test_attendance_rate(self):
        assert attendance_rate(0, 0) == 0
        assert attendance_rate(2, 3) == 66.67

    def test_committee_report(self, database, make_user, make_committee, make_event):
        committee = make_committee()
        event = make_event(committee, is_group=True, max_group_size=3)
        verifier = make_user(role='member')
        leader, member = make_user(), make_user()
        registration = create_registration(database, _id(event), leader, [_id(member)])
        upsert_attendance(database, verifier, registration['id'], _id(leader), 'present')

        report = committee_report(database, [_id(event)])
        event_report = report['event_reports'][0]
        assert event_report['registrations'] == 1
        assert event_report['total_participants'] == 2
        assert event_report['attendance'] == {'present': 1, 'absent': 0, 'not_marked': 1}
        assert report['summary']['attendance_rate'] == 50.0
