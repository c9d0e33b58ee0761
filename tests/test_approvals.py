import pytest

from conftest import FakeSession, make_user
from reimbursement_api.approval_queries import (
    UNMANAGED,
    build_approved_items_query,
    build_item_for_action_query,
    build_pending_items_query,
    build_superadmin_query,
    enrich_items,
)

OPEN = {'p1': 'submitted', 'p2': 'pending approval', 'p3': 'partially_approved'}


def item_row(**overrides):
    row = {
        'id': 10,
        'reimbursement_id': 5,
        'amount': 120,
        'status': 'pending',
        'user_id': 20,
        'reimbursement_status': 'pending approval',
        'owner_manager_id': 7,
        'unmanaged': False,
    }
    row.update(overrides)
    return row


class TestQueueQueries:

    def test_manager_pending_is_scoped_to_reports_and_unmanaged(self):
        query, params = build_pending_items_query('manager', 7)

        assert 'r.status IN (:p1, :p2, :p3)' in query
        assert 'ri.status = :p4' in query
        assert f'(u.manager_id = :p5 OR {UNMANAGED})' in query
        assert 'r.user_id <> :p6' in query
        assert query.endswith('ORDER BY ri.created_at DESC')
        assert params == {**OPEN, 'p4': 'pending', 'p5': 7, 'p6': 7}

    def test_hr_pending_includes_unmanaged_pending_items(self):
        query, params = build_pending_items_query('hr', 3)

        assert f'(ri.status = :p4 OR (ri.status = :p5 AND {UNMANAGED}))' in query
        assert 'r.user_id <> :p6' in query
        assert params == {**OPEN, 'p4': 'approved_by_manager', 'p5': 'pending', 'p6': 3}

    def test_finance_pending(self):
        query, params = build_pending_items_query('finance')

        assert 'ri.status = :p4' in query
        assert 'IS NULL' not in query
        assert 'r.user_id' not in query
        assert params == {**OPEN, 'p4': 'approved_by_hr'}

    def test_manager_decided_view_reads_own_decisions(self):
        query, params = build_approved_items_query('manager', 7)

        assert 'EXISTS (SELECT 1 FROM reimbursement_approvals ra' in query
        assert 'ra.approver_id = :p2' in query
        assert query.endswith('ORDER BY ri.updated_at DESC')
        assert params == {'p1': 'manager', 'p2': 7}

    def test_hr_decided_view_is_not_scoped_to_approver(self):
        query, params = build_approved_items_query('hr', 3)
        assert 'approver_id' not in query
        assert params == {'p1': 'hr'}

    def test_superadmin_views(self):
        _, params = build_superadmin_query('rejected', 'hr')
        assert params == {'p1': 'rejected_by_hr'}

        query, params = build_superadmin_query('approved', 'finance')
        assert 'ra.status = :p2' in query
        assert params == {'p1': 'finance', 'p2': 'approved'}

        query, params = build_superadmin_query('pending', 'manager')
        assert 'r.status IN (:p1, :p2, :p3)' in query
        assert params == {**OPEN, 'p4': 'pending'}

    def test_superadmin_unknown_view(self):
        with pytest.raises(ValueError):
            build_superadmin_query('archived', 'hr')

    def test_action_query_locks_the_item(self):
        query, params = build_item_for_action_query(10)
        assert query.endswith('FOR UPDATE OF ri')
        assert params == {'p1': 10}


def test_enrich_items_groups_approvals_and_attachments():
    db = FakeSession([
        [
            {'id': 1, 'reimbursement_item_id': 10, 'approval_level': 'manager', 'approver_name': 'Mia Manager'},
            {'id': 2, 'reimbursement_item_id': 11, 'approval_level': 'manager', 'approver_name': 'Mia Manager'},
        ],
        [
            {'id': 30, 'reimbursement_id': 5, 'reimbursement_item_id': 10, 'file_name': 'a.pdf'},
            {'id': 31, 'reimbursement_id': 6, 'reimbursement_item_id': None, 'file_name': 'b.pdf'},
        ],
    ])
    items = [{'item_id': 10, 'reimbursement_id': 5}, {'item_id': 11, 'reimbursement_id': 6}]

    enriched = enrich_items(db, items, 'manager')

    assert [a['id'] for a in enriched[0]['approvals']] == [1]
    assert [a['id'] for a in enriched[0]['attachments']] == [30]
    assert [a['id'] for a in enriched[1]['attachments']] == [31]
    approvals_sql, approvals_params = db.executed[0]
    assert 'ra.approval_level = :p3' in approvals_sql
    assert approvals_params == {'p1': 10, 'p2': 11, 'p3': 'manager'}


def test_enrich_nothing_runs_no_queries():
    db = FakeSession()
    assert enrich_items(db, []) == []
    assert db.executed == []


class TestQueueRoutes:

    def test_manager_pending(self, client_for, db):
        db.queue(
            [{'item_id': 10, 'reimbursement_id': 5, 'item_status': 'pending'}],
            [{'id': 1, 'reimbursement_item_id': 10, 'approver_name': 'Hana HR'}],
            [],
        )

        response = client_for(make_user('manager', id=7)).get('/api/approvals/manager/pending')

        assert response.status_code == 200
        data = response.json()['data']
        assert data[0]['item_id'] == 10
        assert data[0]['approvals'][0]['approver_name'] == 'Hana HR'
        assert data[0]['attachments'] == []
        assert db.executed[0][1]['p5'] == 7

    def test_wrong_role(self, client_for):
        response = client_for(make_user('hr')).get('/api/approvals/manager/pending')
        assert response.status_code == 403
        assert response.json()['detail'] == 'Access denied. Manager role required.'

    def test_anonymous(self, client_for):
        assert client_for().get('/api/approvals/finance/approved').status_code == 401

    def test_queue_failure(self, client_for, db):
        db.queue(RuntimeError('timeout'))

        response = client_for(make_user('finance')).get('/api/approvals/finance/pending')

        assert response.status_code == 500
        assert response.json()['message'] == 'Failed to fetch pending approvals'

    def test_superadmin_invalid_view(self, client_for):
        response = client_for(make_user('superadmin')).get('/api/approvals/superadmin/hr/archived')
        assert response.status_code == 400
        assert response.json()['message'] == 'Invalid status. Use: pending, approved, or rejected'

    def test_superadmin_view(self, client_for, db):
        db.queue([])

        response = client_for(make_user('superadmin')).get('/api/approvals/superadmin/finance/rejected')

        assert response.status_code == 200
        assert response.json() == {'success': True, 'data': []}
        assert db.executed[0][1] == {'p1': 'rejected_by_finance'}


class TestDecisions:

    def test_item_id_required(self, client_for, db):
        response = client_for(make_user('manager')).post('/api/approvals/manager/approve', json={})

        assert response.status_code == 400
        assert response.json()['message'] == 'Item ID is required'
        assert db.executed == []

    def test_reject_requires_comments(self, client_for, db):
        response = client_for(make_user('hr')).post('/api/approvals/hr/reject', json={'itemId': 10, 'comments': '  '})

        assert response.status_code == 400
        assert response.json()['message'] == 'Comments are required for rejection'
        assert db.executed == []

    def test_manager_cannot_act_on_someone_elses_report(self, client_for, db):
        db.queue([item_row(owner_manager_id=99)])

        response = client_for(make_user('manager', id=7)).post('/api/approvals/manager/approve', json={'itemId': 10})

        assert response.status_code == 404
        assert response.json()['message'] == 'Item not found or not ready for Manager approval'
        assert db.rollbacks == 1
        assert db.commits == 0

    def test_item_in_wrong_status(self, client_for, db):
        db.queue([item_row(status='approved_by_manager')])

        response = client_for(make_user('manager', id=7)).post(
            '/api/approvals/manager/reject', json={'itemId': 10, 'comments': 'Missing receipt'}
        )

        assert response.status_code == 404
        assert response.json()['message'] == 'Item not found or not ready for Manager rejection'

    def test_draft_reimbursement_items_cannot_be_decided(self, client_for, db):
        db.queue([item_row(reimbursement_status='draft')])

        response = client_for(make_user('manager', id=7)).post('/api/approvals/manager/approve', json={'itemId': 10})

        assert response.status_code == 404
        assert response.json()['message'] == 'Item not found or not ready for Manager approval'
        assert len(db.executed) == 1
        assert db.commits == 0

    def test_unmanaged_manager_cannot_approve_own_claim(self, client_for, db):
        db.queue([item_row(user_id=7, owner_manager_id=None, unmanaged=True)])

        response = client_for(make_user('manager', id=7)).post('/api/approvals/manager/approve', json={'itemId': 10})

        assert response.status_code == 404
        assert len(db.executed) == 1

    def test_hr_cannot_decide_own_claim(self, client_for, db):
        db.queue([item_row(user_id=3, status='approved_by_manager')])

        response = client_for(make_user('hr', id=3)).post('/api/approvals/hr/approve', json={'itemId': 10})

        assert response.status_code == 404
        assert db.commits == 0

    def test_manager_approve(self, client_for, db):
        db.queue([item_row()])

        response = client_for(make_user('manager', id=7)).post(
            '/api/approvals/manager/approve', json={'itemId': 10, 'comments': 'Looks fine'}
        )

        assert response.status_code == 200
        assert response.json() == {'success': True, 'message': 'Item approved by Manager successfully'}
        (_, lock), (update_item, item_params), (insert, approval), (update_r, r_params) = db.executed
        assert update_item.startswith('UPDATE reimbursement_items SET status')
        assert item_params == {'p1': 'approved_by_manager', 'p2': 10}
        assert insert.startswith('INSERT INTO reimbursement_approvals')
        assert approval == {'p1': 10, 'p2': 7, 'p3': 'manager', 'p4': 'approved', 'p5': 'Looks fine'}
        assert r_params == {'p1': 'pending approval', 'p2': 5}
        assert db.commits == 1

    def test_hr_approves_unmanaged_pending_item(self, client_for, db):
        db.queue([item_row(owner_manager_id=None, unmanaged=True)])

        response = client_for(make_user('hr', id=3)).post('/api/approvals/hr/approve', json={'itemId': 10})

        assert response.status_code == 200
        assert db.executed[1][1] == {'p1': 'approved_by_hr', 'p2': 10}
        assert db.executed[2][1]['p5'] is None

    def test_rejection_marks_reimbursement_partially_approved(self, client_for, db):
        db.queue([item_row(status='approved_by_manager')])

        response = client_for(make_user('hr', id=3)).post(
            '/api/approvals/hr/reject', json={'itemId': 10, 'comments': 'Not a business expense'}
        )

        assert response.status_code == 200
        assert db.executed[1][1]['p1'] == 'rejected_by_hr'
        assert db.executed[-1][1] == {'p1': 'partially_approved', 'p2': 5}

    def test_finance_approval_of_last_item(self, client_for, db):
        db.queue([item_row(status='approved_by_hr')], [], [], [{'status': 'approved_by_finance'}, {'status': 'paid'}])

        response = client_for(make_user('finance', id=4)).post('/api/approvals/finance/approve', json={'itemId': 10})

        assert response.status_code == 200
        assert db.executed[-1][1] == {'p1': 'fully_approved', 'p2': 5}

    def test_database_failure_rolls_back(self, client_for, db):
        db.queue([item_row()], RuntimeError('deadlock detected'))

        response = client_for(make_user('manager', id=7)).post('/api/approvals/manager/approve', json={'itemId': 10})

        assert response.status_code == 500
        assert response.json() == {
            'success': False, 'message': 'Failed to approve item', 'error': 'deadlock detected'
        }
        assert db.rollbacks == 1
        assert db.commits == 0


class TestMarkPaid:
    URL = '/api/approvals/finance/mark-paid'

    def test_requires_finance_approval(self, client_for, db):
        db.queue([item_row(status='approved_by_hr')])

        response = client_for(make_user('finance')).post(self.URL, json={'itemId': 10})

        assert response.status_code == 404
        assert response.json()['message'] == 'Item not found or not approved by finance'

    def test_missing_item(self, client_for, db):
        db.queue([])
        response = client_for(make_user('finance')).post(self.URL, json={'itemId': 10})
        assert response.status_code == 404

    def test_final_amount_mismatch(self, client_for, db):
        db.queue([item_row(status='approved_by_finance', amount=100)])

        response = client_for(make_user('finance')).post(
            self.URL, json={'itemId': 10, 'paidAmount': 100, 'tdsAmount': 10, 'finalAmount': 95}
        )

        assert response.status_code == 400
        assert response.json()['message'] == (
            'Final Amount validation failed. Expected: $90.00 (Paid Amount: $100.00 - TDS: $10.00), Provided: $95.00'
        )
        assert db.rollbacks == 1

    def test_paid_amount_must_be_positive(self, client_for, db):
        db.queue([item_row(status='approved_by_finance')])

        response = client_for(make_user('finance')).post(self.URL, json={'itemId': 10, 'paidAmount': 0})

        assert response.status_code == 400
        assert response.json()['message'] == 'Paid amount must be greater than 0'

    def test_pays_item_and_closes_reimbursement(self, client_for, db):
        db.queue([item_row(status='approved_by_finance', amount=100)], [], [{'status': 'paid'}, {'status': 'paid'}])

        response = client_for(make_user('finance')).post(self.URL, json={
            'itemId': 10,
            'paidAmount': 100,
            'tdsAmount': 10,
            'paymentMethod': 'bank_transfer',
            'paymentReference': 'TRX-1',
            'paymentDate': '2024-05-01',
        })

        assert response.status_code == 200
        assert response.json() == {'success': True, 'message': 'Item marked as paid successfully'}
        payment_sql, payment = db.executed[1]
        assert 'final_amount = :p4' in payment_sql
        assert payment['p1'] == 'paid'
        assert float(payment['p4']) == 90.0
        assert payment['p5'] == 'bank_transfer'
        assert str(payment['p7']) == '2024-05-01'
        assert db.executed[-1][1] == {'p1': 'paid', 'p2': 5}
        assert db.commits == 1

    def test_partial_payment_leaves_reimbursement(self, client_for, db):
        db.queue([item_row(status='approved_by_finance')], [], [{'status': 'paid'}, {'status': 'approved_by_finance'}])

        response = client_for(make_user('finance')).post(self.URL, json={'itemId': 10})

        assert response.status_code == 200
        assert len(db.executed) == 3
        assert float(db.executed[1][1]['p2']) == 120.0
