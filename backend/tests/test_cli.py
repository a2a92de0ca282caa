from orderdesk.services import stock_ledger


def test_stock_show_lists_counters_and_movements(app, db_session, make_product, actor):
    p = make_product("CLI-1", on_hand=4)
    stock_ledger.adjust_on_hand(p.id, 3, actor=actor, note="recount")

    result = app.test_cli_runner().invoke(args=["stock", "show", str(p.id)])

    assert result.exit_code == 0, result.output
    assert "on_hand=7" in result.output
    assert "ADJUST" in result.output


def test_stock_show_unknown_product(app, db_session):
    result = app.test_cli_runner().invoke(args=["stock", "show", "999"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_refresh_overdue_command(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["receivables", "refresh-overdue", "--as-of", "2030-01-01"])
    assert result.exit_code == 0, result.output
    assert "0 installment(s)" in result.output

    result = runner.invoke(args=["receivables", "refresh-overdue", "--as-of", "31/01/2030"])
    assert result.exit_code == 2
