from types import SimpleNamespace

from pokerroom.services.voting.consensus import EMPTY_CONSENSUS, ConsensusResult, calculate_consensus


def v(user_id, value, confidence=None):
    return SimpleNamespace(user_id=user_id, value=value, confidence=confidence)


def test_no_votes_is_empty():
    result = calculate_consensus([])
    assert result is EMPTY_CONSENSUS
    assert result.is_empty
    assert result.achieved is False
    assert result.final_estimate is None


def test_three_of_four_agree():
    result = calculate_consensus([v('a', '3', 4), v('b', '3', 2), v('c', '5', 5), v('d', '3', 1)])
    assert result.achieved is True
    assert result.percentage == 75.0
    assert result.final_estimate == '3'
    assert result.agreeing_voters == ['a', 'b', 'd']
    assert result.outlier_voters == ['c']
    assert result.vote_counts == {'3': 3, '5': 1}
    assert result.confidence == 3.0


def test_two_of_three_meets_default_threshold():
    result = calculate_consensus([v('a', '8'), v('b', '8'), v('c', '13')])
    assert result.percentage == 66.7
    assert result.achieved is True


def test_even_split_is_not_consensus_and_first_value_wins():
    result = calculate_consensus([v('a', '5'), v('b', '8'), v('c', '8'), v('d', '5')])
    assert result.percentage == 50.0
    assert result.achieved is False
    assert result.final_estimate == '5'


def test_missing_confidence_counts_as_default():
    result = calculate_consensus([v('a', '1', 5), v('b', '1')], default_confidence=3)
    assert result.confidence == 4.0


def test_custom_threshold():
    votes = [v('a', 'M'), v('b', 'M'), v('c', 'L')]
    assert calculate_consensus(votes, threshold=80).achieved is False
    assert calculate_consensus(votes, threshold=60).achieved is True


def test_result_rebuilds_from_dict():
    result = calculate_consensus([v('a', '2', 4), v('b', '3', 2)])
    assert ConsensusResult(**result.to_dict()) == result
