from asr_worker.models import Beam
from asr_worker.throttle import PartialUpdateThrottle
from fakes import FakeTokenizer


class TestPartialUpdateThrottle:
    def test_every_tenth_step_emits(self):
        throttle = PartialUpdateThrottle(FakeTokenizer(), every=10)
        emitted = [
            step
            for step in range(1, 38)
            if throttle.on_decode_step([Beam(output_token_ids=[step])], start=0) is not None
        ]
        assert emitted == [10, 20, 30]

    def test_uses_best_candidate_and_last_timestamp(self):
        throttle = PartialUpdateThrottle(FakeTokenizer(), every=1)
        partial = throttle.on_decode_step(
            [Beam(output_token_ids=[1, 2]), Beam(output_token_ids=[3])], start=14
        )
        assert partial.text == "w1 w2"
        assert partial.start == 14
        assert partial.end is None

    def test_no_candidates(self):
        throttle = PartialUpdateThrottle(FakeTokenizer(), every=1)
        assert throttle.on_decode_step([], start=0) is None
        assert throttle.steps == 1
