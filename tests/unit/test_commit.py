from __future__ import annotations

from datetime import date

from cashflow_import.db.store import InMemoryBackend, StoreError, TeamScope
from cashflow_import.models.entities import EntitySource, EntityType, ExtractedEntity
from cashflow_import.models.error_record import ErrorType
from cashflow_import.services.commit import COMMIT_ORDER, commit

TODAY = date(2024, 6, 1)


def _entity(entity_type, row, **data):
    return ExtractedEntity.create(entity_type, data, EntitySource("dados.xlsx", "Plan1", row))


def _expense(row, description, amount, due="2024-05-10"):
    return _entity(EntityType.EXPENSE, row, description=description, amount=amount, dueDate=due)


def test_commit_order():
    assert COMMIT_ORDER == (EntityType.CONTRACT, EntityType.RECEIVABLE, EntityType.EXPENSE)


def test_creates_all_valid_entities(scope):
    entities = [
        _entity(EntityType.CONTRACT, 2, clientName="Ana", projectName="Casa Praia", totalValue=90000, signedDate="2024-01-15"),
        _entity(EntityType.RECEIVABLE, 5, contractId="Casa Praia", amount=30000, expectedDate="2024-02-15"),
        _expense(9, "Aluguel", 1200),
    ]
    result = commit(entities, scope, today=TODAY)

    assert result.success
    assert (result.contracts_created, result.receivables_created, result.expenses_created) == (1, 1, 1)
    assert result.errors == []
    assert len(result.created_ids["contract"]) == 1
    assert scope.count(EntityType.EXPENSE) == 1


def test_receivable_references_contract_created_in_same_commit(scope):
    entities = [
        _entity(EntityType.RECEIVABLE, 5, contractId="casa praia", amount=30000, expectedDate="2024-02-15"),
        _entity(EntityType.CONTRACT, 2, clientName="Ana", projectName="Casa Praia", totalValue=90000, signedDate="2024-01-15"),
    ]
    result = commit(entities, scope, today=TODAY)

    contract_id = result.created_ids["contract"][0]
    [receivable] = scope.find_many(EntityType.RECEIVABLE)
    assert receivable["contractId"] == contract_id
    assert receivable["status"] == "received"


def test_unresolved_contract_reference_is_cleared(scope):
    entities = [_entity(EntityType.RECEIVABLE, 5, contractId="Projeto Fantasma", amount=100, expectedDate="2024-07-15")]
    commit(entities, scope, today=TODAY)
    [receivable] = scope.find_many(EntityType.RECEIVABLE)
    assert receivable["contractId"] is None
    assert receivable["clientName"] == "Projeto Fantasma"


def test_invalid_entities_are_reported_and_skipped(scope):
    entities = [_expense(3, "Aluguel", 1200), _expense(4, "Estorno", 0)]
    result = commit(entities, scope, today=TODAY)

    assert result.success
    assert result.expenses_created == 1
    [record] = result.error_records
    assert record.error_type == ErrorType.VALIDATION_ERROR
    assert (record.sheet, record.row) == ("Plan1", 4)
    assert record.message.startswith("expense 'Estorno': amount must be positive")
    assert result.errors == ["Plan1 row 4: " + record.message]


def test_rejected_rows_do_not_affect_siblings():
    backend = InMemoryBackend(
        reject=lambda entity_type, record: "value too long" if record.get("description") == "Ruim" else None
    )
    scope = TeamScope(backend, "team-1")
    entities = [_expense(2, "Aluguel", 1200), _expense(3, "Ruim", 10), _expense(4, "Software", 99)]

    result = commit(entities, scope, today=TODAY)

    assert result.success
    assert result.expenses_created == 2
    [record] = result.error_records
    assert record.error_type == ErrorType.INSERT_ERROR
    assert record.row == 3
    assert "value too long" in record.message
    assert sorted(r["description"] for r in scope.find_many(EntityType.EXPENSE)) == ["Aluguel", "Software"]


def test_duplicates_are_skipped(scope):
    scope.create_many(EntityType.EXPENSE, [
        {"description": "Aluguel", "amount": 1200.0, "dueDate": "2024-05-10", "category": "Outros", "status": "paid"},
    ])
    entities = [
        _expense(2, "Aluguel", "1.200,00"),
        _expense(3, "Software", 99),
        _expense(4, "software", 99),
    ]
    result = commit(entities, scope, today=TODAY)

    assert result.expenses_created == 1
    assert len(result.duplicates) == 2
    assert result.duplicates[0].startswith("expense 'Aluguel'")
    assert "row 4" in result.duplicates[1]
    assert result.errors == []


def test_store_failure_is_systematic_for_that_type():
    class BrokenExpenses(InMemoryBackend):
        def create_many(self, team_id, entity_type, records):
            if entity_type is EntityType.EXPENSE:
                raise StoreError("expenses: connection lost")
            return super().create_many(team_id, entity_type, records)

    scope = TeamScope(BrokenExpenses(), "team-1")
    entities = [
        _entity(EntityType.CONTRACT, 2, clientName="Ana", projectName="Casa", totalValue=10, signedDate="2024-01-15"),
        _expense(3, "Aluguel", 1200),
        _expense(4, "Software", 99),
    ]
    result = commit(entities, scope, today=TODAY)

    assert not result.success
    assert result.contracts_created == 1
    assert result.expenses_created == 0
    [record] = result.error_records
    assert record.error_type == ErrorType.PERSISTENCE_ERROR
    assert record.row == -1
    assert record.message == "failed to save 2 expenses: expenses: connection lost"


def test_empty_commit(scope):
    result = commit([], scope, today=TODAY)
    assert result.success
    assert result.total_created == 0
