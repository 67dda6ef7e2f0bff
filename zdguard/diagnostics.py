"""Diagnostic templates: a hazard paragraph followed by remediation code.

Templates are ``str.format`` strings. ``render`` fills them from the
offending operation, so the examples name the real table and columns:

    {table}            users
    {table_title}      Users
    {table_model}      User
    {column}           active            (AddColumn, RemoveColumn, SchemaChange)
    {column_title}     Active
    {column_type}      boolean
    {column_default}   True              (repr of the default, None when absent)
    {old_column}       fname             (RenameColumn)
    {new_column}       first_name
    {index_columns}    ["email"]         (AddIndex)
    {index_title}      Email
    {method}           each              (RawIteration)
    {action}           update_all        (DataMutation, SchemaChange)
    {categories}       ddl and data      (mixed migrations)
"""
import textwrap
from typing import Any, Dict, Optional

from zdguard.naming import camelize, model_name, table_title
from zdguard.operations import (
    AddColumn,
    AddIndex,
    Operation,
    RawIteration,
    RemoveColumn,
    RenameColumn,
    SchemaChange,
)
from zdguard.scope import ScopeState

ADD_COLUMN_DEFAULT = """\
    Adding a column with a default is unsafe!

    This can take a long time with significant database
    size or traffic and lock your table!

    First let's add the column without a default. When we add
    a column with a default it has to lock the table while it
    performs an UPDATE for ALL rows to set this new default.

        class Add{column_title}To{table_title}(Migration):
            def up(self, schema):
                schema.add_column("{table}", "{column}", "{column_type}")

    Then we'll set the new column default in a separate migration.
    Note that this does not update any existing data! This only
    sets the default for newly inserted rows going forward.

        class AddDefault{column_title}To{table_title}(Migration):
            def up(self, schema):
                schema.change_column_default("{table}", "{column}", {column_default})

    Finally we'll backport the default value for existing data in
    batches. This should be done in its own migration as well.
    Updating in batches allows us to lock 1000 rows at a time
    (or whatever batch size we prefer).

        class BackportDefault{column_title}To{table_title}(Migration):
            def up(self, schema):
                rel = schema.table("{table}")
                for batch in rel.find_in_batches(batch_size=1000):
                    ids = [row["id"] for row in batch]
                    rel.where(id=ids).update_all({column}={column_default})

    Note that in some cases it may not even be necessary to backport a default value.

        class {table_model}(Model):
            @property
            def {column}(self):
                value = self.attributes.get("{column}")
                return {column_default} if value is None else value

    If you're 100% positive that this migration is already safe, then wrap the
    call to `add_column` in a `safety_assured` block.

        class Add{column_title}To{table_title}(Migration):
            def up(self, schema):
                with schema.safety_assured():
                    schema.add_column("{table}", "{column}", "{column_type}", default={column_default})
"""

ADD_COLUMN_NOT_NULL = """\
    Adding a not nullable column is unsafe!

    This can take a long time with significant database
    size or traffic and lock your table!

    When we add a column with the not nullable option it has to
    lock the table while it performs an UPDATE for ALL rows to
    set a default.

    Adding a not nullable column is onerous, but if it's really
    really necessary there are two pathways depending on the size
    of the table:

    Small tables (< 500 000 rows)

    First let's add the column without a default.

        class Add{column_title}To{table_title}(Migration):
            def up(self, schema):
                schema.add_column("{table}", "{column}", "{column_type}")

    Then we'll set the new column default in a separate migration.
    Note that this does not update any existing data. This only
    sets the default for newly inserted rows going forward.

        class AddDefault{column_title}To{table_title}(Migration):
            def up(self, schema):
                schema.change_column_default("{table}", "{column}", {column_default})

    Then we'll backport the default value for existing data in
    batches. This should be done in its own migration as well.
    Updating in batches allows us to lock 1000 rows at a time
    (or whatever batch size we prefer).

        class BackportDefault{column_title}To{table_title}(Migration):
            def up(self, schema):
                rel = schema.table("{table}")
                for batch in rel.find_in_batches(batch_size=1000):
                    ids = [row["id"] for row in batch]
                    rel.where(id=ids).update_all({column}={column_default})

    Finally add the not null constraint on the table - note this
    still requires a full table scan to check all values.

        class Change{column_title}ToNotNullable(Migration):
            def up(self, schema):
                schema.change_column_null("{table}", "{column}", False)

    Larger tables (> 500 000 rows)

    Firstly, create a new table with the addition of the non-nullable
    column and adjust the code to write to both tables but still read
    from the original.

        class AddNew{table_title}WithNotNullable{column_title}(Migration):
            def up(self, schema):
                schema.create_table("{table}_new")
                with schema.safety_assured():
                    schema.add_column("{table}_new", "{column}", "{column_type}", default={column_default}, null=False)

    Then backport the expected value for existing data in batches.
    This should be done in its own migration.

    Finally, in a separate release switch the code to use the new table
    and follow it up with yet another release to drop the old table.

    If you're 100% positive that this migration is already safe, then
    wrap the call to `add_column` in a `safety_assured` block.

        class Add{column_title}To{table_title}(Migration):
            def up(self, schema):
                with schema.safety_assured():
                    schema.add_column("{table}", "{column}", "{column_type}", null=False, default={column_default})
"""

REMOVE_COLUMN = """\
    Removing a column while a deployed and running version of the app
    depends on that column is unsafe!

    This can cause a significant number of possibly critical errors while
    the older version of the app is running and expecting the column to be
    there.

    First, deploy a version of the app which ignores the column. Any query
    that selects every column (for example through a cached prepared
    statement) will still fail until the app stops asking for it.

    Example of ignoring a column on the model:

        class {table_model}(Model):
            ignored_columns = ["{column}"]

    Then, deploy a version of the app which includes a migration to drop
    the column and removes the code to ignore the column.

    If you're 100% positive that this migration is already safe, then wrap
    the call to `remove_column` in a `safety_assured` block.

        class Remove{column_title}From{table_title}(Migration):
            def up(self, schema):
                with schema.safety_assured():
                    schema.remove_column("{table}", "{column}")

    Note: When removing an attribute from a model which is serialized in
    API responses, be sure to consider how clients will handle responses
    without the attribute.
"""

RENAME_COLUMN = """\
    Renaming a column while a deployed and running version of the app
    depends on that column is unsafe!

    This can cause a significant number of possibly critical errors while
    the older version of the app is running and expecting the column to have
    the original name.

    Three separate releases are required.

    First, add a new column and make sure the app is writing to it. Ensure
    that the accessor reads from both columns, e.g.

        class Add{new_column_title}To{table_title}(Migration):
            def up(self, schema):
                schema.add_column("{table}", "{new_column}", "<data type here>")

        class {table_model}(Model):
            @property
            def {new_column}(self):
                return self.attributes.get("{new_column}") or self.attributes.get("{old_column}")

    Then, populate the new column with data from the previous one. The
    second release includes updates to queries to refer to the new column
    name.

    Finally, in a third release, remove the old column.

        class Remove{old_column_title}From{table_title}(Migration):
            def up(self, schema):
                with schema.safety_assured():
                    schema.remove_column("{table}", "{old_column}")

    If you're 100% positive that this migration is already safe, then wrap
    the call to `rename_column` in a `safety_assured` block.

        class Rename{old_column_title}To{new_column_title}On{table_title}(Migration):
            def up(self, schema):
                with schema.safety_assured():
                    schema.rename_column("{table}", "{old_column}", "{new_column}")
"""

ADD_INDEX_LOCKING = """\
    Adding a non-concurrent index is unsafe!

    This action will lock your table while the index is built, blocking
    every write to {table} until it finishes. On a large table that can
    take minutes.

    Instead, build the index concurrently in its own migration and disable
    the DDL transaction for it, since a concurrent build cannot run inside
    a transaction.

        class AddIndexOn{index_title}To{table_title}(Migration):
            disable_ddl_transaction = True

            def up(self, schema):
                schema.add_index("{table}", {index_columns}, algorithm="concurrently")

    If you're 100% positive that this migration is already safe, then wrap
    the call to `add_index` in a `safety_assured` block.

        class AddIndexOn{index_title}To{table_title}(Migration):
            def up(self, schema):
                with schema.safety_assured():
                    schema.add_index("{table}", {index_columns})
"""

ADD_INDEX_IN_TRANSACTION = """\
    Adding a concurrent index inside a DDL transaction is unsafe!

    A concurrent index build cannot run inside a transaction. The database
    will either refuse it or fall back to a locking build.

    Disable the DDL transaction for this migration and keep the index
    build as its only operation.

        class AddIndexOn{index_title}To{table_title}(Migration):
            disable_ddl_transaction = True

            def up(self, schema):
                schema.add_index("{table}", {index_columns}, algorithm="concurrently")
"""

MIXED_MIGRATION = """\
    Mixing {categories} operations in one migration is unsafe!

    Schema changes, data updates and index builds each belong in their own
    migration. When one of them fails the others cannot be retried on their
    own, and a concurrent index build needs the DDL transaction disabled
    while everything else needs it on.

    Split this migration up, for example:

        class Change{table_title}Schema(Migration):
            def up(self, schema):
                ...  # schema changes only

        class Backfill{table_title}(Migration):
            def up(self, schema):
                ...  # batched data updates only

        class AddIndexesTo{table_title}(Migration):
            disable_ddl_transaction = True

            def up(self, schema):
                ...  # concurrent index builds only

    If you're 100% positive that this migration is already safe, then set
    `safety_assured = True` on the migration class.
"""

DDL_TRANSACTION = """\
    Disabling the DDL transaction is unsafe!

    The DDL transaction wraps the migration so that a failure rolls every
    change back. Turning it off is only needed for concurrent index builds,
    and `{action}` on {table} is not one. Without the transaction a failure
    halfway through leaves {table} partially migrated.

    Remove `disable_ddl_transaction` from this migration:

        class Migrate{table_title}(Migration):
            def up(self, schema):
                ...

    If you're 100% positive that this migration is already safe, then wrap
    the call in a `safety_assured` block.
"""

UNBATCHED_ITERATION = """\
    Iterating over an entire table with `{method}()` is unsafe!

    This loads every row of {table} into memory at once and can hold locks
    for as long as the loop runs. On a large table that means unbounded
    memory use and a long-running migration.

    Fetch the rows in batches instead:

        class Backfill{table_title}(Migration):
            def up(self, schema):
                for row in schema.table("{table}").find_each(batch_size=1000):
                    ...

    Or narrow the relation first so only the rows you need are loaded:

        class Backfill{table_title}(Migration):
            def up(self, schema):
                for row in schema.table("{table}").where(...).{method}():
                    ...

    If you're 100% positive that this migration is already safe, then wrap
    the loop in a `safety_assured` block.
"""


def _quoted_list(values) -> str:
    return "[" + ", ".join(f'"{v}"' for v in values) + "]"


def _join_words(words) -> str:
    words = list(words)
    if len(words) <= 1:
        return "".join(words)
    return ", ".join(words[:-1]) + " and " + words[-1]


def identifier_params(op: Operation, state: Optional[ScopeState] = None) -> Dict[str, Any]:
    """Template parameters derived from an operation's identifiers."""
    params: Dict[str, Any] = {
        "table": op.table,
        "table_title": table_title(op.table),
        "table_model": model_name(op.table),
        "kind": op.kind.value,
        "action": getattr(op, "action", op.kind.value),
    }
    if isinstance(op, (AddColumn, RemoveColumn, SchemaChange)) and op.column:
        params["column"] = op.column
        params["column_title"] = camelize(op.column)
    if isinstance(op, AddColumn):
        params["column_type"] = op.type
        params["column_default"] = repr(op.default if op.has_default else None)
    elif isinstance(op, RenameColumn):
        params["old_column"] = op.old_column
        params["new_column"] = op.new_column
        params["old_column_title"] = camelize(op.old_column)
        params["new_column_title"] = camelize(op.new_column)
    elif isinstance(op, AddIndex):
        params["index_columns"] = _quoted_list(op.columns)
        params["index_title"] = "And".join(camelize(c) for c in op.columns)
    elif isinstance(op, RawIteration):
        params["method"] = op.method
    if state is not None:
        params["categories"] = _join_words(sorted(c.value for c in state.categories))
    return params


def render(template: str, op: Operation, state: Optional[ScopeState] = None) -> str:
    """Fill ``template`` with identifiers from ``op`` and return the finished message."""
    return textwrap.dedent(template).strip().format(**identifier_params(op, state))
