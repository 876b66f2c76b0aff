from emberorm.persistence import CommitOrderCalculator


def build(nodes, edges):
    calculator = CommitOrderCalculator()
    for name in nodes:
        calculator.add_node(name)
    for source, target, weight in edges:
        calculator.add_dependency(source, target, weight)
    return calculator


def test_parent_sorted_before_child():
    calculator = build(["Book", "Author"], [("Author", "Book", 1)])
    assert calculator.sort() == ["Author", "Book"]


def test_unconstrained_nodes_keep_insertion_order():
    calculator = build(["A", "B", "C"], [])
    assert calculator.sort() == ["A", "B", "C"]


def test_chain_is_fully_ordered():
    calculator = build(["C", "A", "B"], [("A", "B", 1), ("B", "C", 1)])
    assert calculator.sort() == ["A", "B", "C"]


def test_optional_back_edge_lets_required_side_win():
    # B requires A; A optionally points back at B.
    edges = [("A", "B", 1), ("B", "A", 0)]
    assert build(["A", "B"], edges).sort() == ["A", "B"]
    assert build(["B", "A"], edges).sort() == ["A", "B"]


def test_required_cycle_emits_every_node_once():
    calculator = build(["X", "Y", "Z"], [("X", "Y", 1), ("Y", "Z", 1), ("Z", "X", 1)])
    order = calculator.sort()
    assert sorted(order) == ["X", "Y", "Z"]
    assert calculator.sort() == order


def test_heavier_duplicate_edge_wins():
    calculator = CommitOrderCalculator()
    calculator.add_node("A")
    calculator.add_node("B")
    calculator.add_dependency("B", "A", 0)
    calculator.add_dependency("B", "A", 1)
    calculator.add_dependency("A", "B", 0)
    assert calculator.sort() == ["B", "A"]


def test_has_node_and_idempotent_add():
    calculator = CommitOrderCalculator()
    calculator.add_node("A")
    calculator.add_node("A")
    assert calculator.has_node("A")
    assert not calculator.has_node("B")
    assert calculator.sort() == ["A"]
