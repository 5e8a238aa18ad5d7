"""Unit tests for prompt rendering and autoregressive generation."""
import threading
import time
import pytest
from voiceinstruct.core.errors import ConfigurationError, InferenceError, PromptTokenizationError
from voiceinstruct.ml.generator import SYSTEM_PROMPT, TextGenerator, render_prompt
from voiceinstruct.ml.sampling import LogitsSampler
from voiceinstruct.ml.tokens import Vocabulary
from fakes import FakeLanguageModel, FakeTokenizer, LLAMA_SPECIALS

QUESTION = "Who co-founded Apple with Steve Jobs?"


def make_generator(model=None, tokenizer=None, **kwargs):
    tokenizer = tokenizer or FakeTokenizer(LLAMA_SPECIALS)
    model = model or FakeLanguageModel(tokenizer)
    kwargs.setdefault("sampler", LogitsSampler(temperature=0.0))
    return TextGenerator(model, Vocabulary(tokenizer), **kwargs), model, tokenizer


def test_render_prompt_template():
    """The instruction lands in the user turn, the system turn allows 'Not Known'."""
    prompt = render_prompt("  What time is it?  ")

    assert prompt.startswith("<|begin_of_text|><|start_header_id|>system<|end_header_id|>\n\n")
    assert "user<|end_header_id|>\n\nWhat time is it?<|eot_id|>" in prompt
    assert prompt.endswith("<|start_header_id|>assistant<|end_header_id|>\n\n")
    assert "Not Known" in SYSTEM_PROMPT
    assert SYSTEM_PROMPT in prompt


def test_generate_answers_until_stop_token():
    """Greedy generation replays the model's answer and stops at <|eot_id|>."""
    generator, model, _ = make_generator()

    text, n_tokens, elapsed = generator.generate(QUESTION)

    assert text == "Steve Wozniak co-founded Apple."
    assert n_tokens == 10
    assert elapsed >= 0
    # One prompt pass plus one pass per generated token
    assert len(model.calls) == 11


def test_generate_feeds_single_tokens_at_increasing_positions():
    """After the prompt only the new token is fed, at the next position."""
    generator, model, _ = make_generator()
    generator.generate(QUESTION)

    prompt_tokens, first_pos = model.calls[0]
    assert first_pos == 0
    assert len(prompt_tokens) > 1

    positions = [pos for _, pos in model.calls[1:]]
    assert positions == list(range(len(prompt_tokens), len(prompt_tokens) + 10))
    assert all(len(tokens) == 1 for tokens, _ in model.calls[1:])


def test_stop_token_never_in_output():
    """A stop token ends generation and is not counted or decoded."""
    tokenizer = FakeTokenizer(LLAMA_SPECIALS)
    model = FakeLanguageModel(tokenizer)
    generator, _, _ = make_generator(model=model, tokenizer=tokenizer, stop_tokens=[tokenizer.token_to_id(".")])

    text, n_tokens, _ = generator.generate(QUESTION)

    assert text == "Steve Wozniak co-founded Apple"
    assert n_tokens == 9


def test_generate_respects_token_cap():
    """Generation ends once max_new_tokens tokens exist."""
    generator, model, _ = make_generator(max_new_tokens=3)

    text, n_tokens, _ = generator.generate(QUESTION)

    assert n_tokens == 3
    assert text == "Steve Wozniak"
    assert len(model.calls) == 3


def test_invalid_token_cap_rejected():
    """max_new_tokens below 1 is a configuration error."""
    with pytest.raises(ConfigurationError):
        make_generator(max_new_tokens=0)


def test_generation_restarts_cache_each_call():
    """Every call starts a fresh sequence at position 0."""
    generator, model, _ = make_generator()

    first = generator.generate(QUESTION)
    second = generator.generate(QUESTION)

    assert first.text == second.text
    assert [pos for _, pos in model.calls].count(0) == 2


def test_prompt_tokenization_failure():
    """Tokenizer errors surface as PromptTokenizationError before the model runs."""
    generator, model, tokenizer = make_generator()
    tokenizer.fail_encode = True

    with pytest.raises(PromptTokenizationError):
        generator.generate(QUESTION)
    assert model.calls == []


def test_forward_failure_is_inference_error():
    """A model exception mid-generation becomes InferenceError and frees the lock."""
    tokenizer = FakeTokenizer(LLAMA_SPECIALS)
    model = FakeLanguageModel(tokenizer, fail_at_step=2)
    generator, _, _ = make_generator(model=model, tokenizer=tokenizer)

    with pytest.raises(InferenceError):
        generator.generate(QUESTION)
    assert not generator.busy


def test_lock_timeout_is_inference_error():
    """A caller that cannot get the model within the timeout fails cleanly."""
    generator, model, _ = make_generator(lock_timeout=0.05)

    with generator._guard.acquire():
        assert generator.busy
        with pytest.raises(InferenceError):
            generator.generate(QUESTION)

    assert model.calls == []


def test_concurrent_calls_are_serialized():
    """Two callers never run the model at the same time."""
    tokenizer = FakeTokenizer(LLAMA_SPECIALS)
    model = FakeLanguageModel(tokenizer, delay=0.01)
    generator, _, _ = make_generator(model=model, tokenizer=tokenizer)
    results = []

    def worker():
        results.append(generator.generate(QUESTION))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    start = time.perf_counter()
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    total = time.perf_counter() - start

    assert model.max_active == 1
    assert [r.text for r in results] == ["Steve Wozniak co-founded Apple."] * 2
    # 2 calls x 11 forward passes x 10 ms
    assert total >= 0.2


def test_seeded_sampling_is_reproducible():
    """Same seed and instruction, same answer, even away from greedy."""
    tokenizer = FakeTokenizer(LLAMA_SPECIALS)
    runs = []
    for _ in range(2):
        model = FakeLanguageModel(tokenizer, peak=2.0, vocab_size=len(LLAMA_SPECIALS))
        generator, _, _ = make_generator(
            model=model,
            tokenizer=tokenizer,
            sampler=LogitsSampler(temperature=0.8, top_k=40, top_p=0.95, seed=299792458),
            max_new_tokens=16,
        )
        runs.append(generator.generate(QUESTION))

    assert runs[0].text == runs[1].text
    assert runs[0].n_tokens == runs[1].n_tokens


def test_nan_logits_is_inference_error_when_sampling():
    """Non-finite logits fail cleanly instead of crashing the sampler."""
    tokenizer = FakeTokenizer(LLAMA_SPECIALS)
    model = FakeLanguageModel(tokenizer, nan_at_step=3)
    generator, _, _ = make_generator(
        model=model,
        tokenizer=tokenizer,
        sampler=LogitsSampler(temperature=0.8, seed=1),
    )

    with pytest.raises(InferenceError):
        generator.generate(QUESTION)
    assert not generator.busy


def test_nan_logits_is_inference_error_when_greedy():
    """Greedy decoding does not turn NaN logits into a token either."""
    tokenizer = FakeTokenizer(LLAMA_SPECIALS)
    model = FakeLanguageModel(tokenizer, nan_at_step=0)
    generator, _, _ = make_generator(model=model, tokenizer=tokenizer)

    with pytest.raises(InferenceError):
        generator.generate(QUESTION)
    assert len(model.calls) == 1
