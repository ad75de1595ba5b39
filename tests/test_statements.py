from polyrun.statements import StatementBuffer, StatementInjector, source_lines


def test_exec_before_none_clears_buffer():
    injector = StatementInjector()
    injector.exec_before(["a", "b"])
    assert injector.before.lines == ("a", "b")
    injector.exec_before(None)
    assert injector.before.lines == ()


def test_buffers_replace_instead_of_append():
    injector = StatementInjector()
    injector.exec_after(["one"])
    injector.exec_after(["two", "three"])
    assert injector.after.lines == ("two", "three")
    injector.exec_after([])
    assert not injector.after


def test_statement_buffer_set_and_clear():
    buffer = StatementBuffer(["x = 1"])
    assert len(buffer) == 1
    buffer.set(line for line in ["y = 2", "z = 3"])
    assert list(buffer) == ["y = 2", "z = 3"]
    buffer.clear()
    assert buffer.lines == ()


def test_bracket_places_statements_around_code():
    injector = StatementInjector()
    injector.exec_before(["setup()", "if True:\n    pass"])
    injector.exec_after(["teardown()"])
    source = injector.bracket("first()\nsecond()")
    assert source.text == (
        "setup()\nif True:\n    pass\nfirst()\nsecond()\nteardown()\n"
    )
    assert source.offset == 3
    assert source.to_user_line(4) == 1
    assert source.to_user_line(5) == 2
    assert source.to_user_line(2) == -1
    assert source.to_user_line(6) == -1


def test_bracket_without_statements_keeps_lines():
    source = StatementInjector().bracket("print(1)")
    assert source.text == "print(1)\n"
    assert source.offset == 0
    assert source.to_user_line(1) == 1


def test_bracket_splits_only_on_real_line_breaks():
    injector = StatementInjector()
    injector.exec_before(["x = 1"])
    source = injector.bracket('s = "a\u2028b\x0cc"\r\nprint(s)\rdone()')
    assert source.text == 'x = 1\ns = "a\u2028b\x0cc"\nprint(s)\ndone()\n'
    assert source.user_lines == 3
    assert source.to_user_line(4) == 3


def test_source_lines_drops_only_the_final_break():
    assert source_lines("") == []
    assert source_lines("a\n") == ["a"]
    assert source_lines("a\n\nb") == ["a", "", "b"]


def test_single_string_is_one_statement():
    injector = StatementInjector()
    injector.exec_before("x = 1")
    assert injector.before.lines == ("x = 1",)
    injector.exec_after("")
    assert injector.after.lines == ()
