"""
Learner answer values, one shape per question type.

The autosave buffer only ever holds these; ``to_payload`` turns one into the
dict the persistence service accepts.
"""
from dataclasses import dataclass
from typing import Optional

from quizzes.exceptions import ValidationError
from quizzes.questions import QuestionType


@dataclass(frozen=True)
class TextAnswer:
    text: str = ''


@dataclass(frozen=True)
class SingleChoiceAnswer:
    option: Optional[str] = None


@dataclass(frozen=True)
class MultiChoiceAnswer:
    options: frozenset = frozenset()

    def toggled(self, option):
        if option in self.options:
            return MultiChoiceAnswer(self.options - {option})
        return MultiChoiceAnswer(self.options | {option})


@dataclass(frozen=True)
class MediaAnswer:
    """
    A recording or uploaded file. ``local_ref`` is playable right away;
    ``durable_ref`` only exists once storage accepted the bytes.
    """
    local_ref: Optional[str] = None
    durable_ref: Optional[str] = None
    file_name: str = ''
    upload_failed: bool = False

    @property
    def ref(self):
        return self.durable_ref or self.local_ref

    @property
    def is_durable(self):
        return self.durable_ref is not None


ANSWER_SHAPES = {
    QuestionType.FREE_TEXT.value: TextAnswer,
    QuestionType.MEDIA_PROMPT.value: TextAnswer,
    QuestionType.SINGLE_SELECT.value: SingleChoiceAnswer,
    QuestionType.MULTI_SELECT.value: MultiChoiceAnswer,
    QuestionType.AUDIO_RECORDING.value: MediaAnswer,
    QuestionType.FILE_UPLOAD.value: MediaAnswer,
}


def shape_for(question_type):
    try:
        return ANSWER_SHAPES[str(question_type)]
    except KeyError:
        raise ValidationError(f"Unknown question type '{question_type}'.", field='question_type')


def check_shape(question, answer):
    """Raise ValidationError unless ``answer`` fits the question's type."""
    shape = shape_for(question.question_type)
    if not isinstance(answer, shape):
        raise ValidationError(
            f"A {question.question_type} question takes a {shape.__name__}, got {type(answer).__name__}.",
            field='answer',
        )
    if isinstance(answer, SingleChoiceAnswer) and answer.option is not None:
        if answer.option not in question.options:
            raise ValidationError(f"'{answer.option}' is not an option.", field='selected_options')
    if isinstance(answer, MultiChoiceAnswer):
        unknown = sorted(answer.options - set(question.options))
        if unknown:
            raise ValidationError(f"Not options: {', '.join(unknown)}", field='selected_options')
    return answer


def is_answered(question, answer) -> bool:
    if answer is None:
        return False
    if isinstance(answer, TextAnswer):
        return bool(answer.text.strip())
    if isinstance(answer, SingleChoiceAnswer):
        return answer.option is not None
    if isinstance(answer, MultiChoiceAnswer):
        return bool(answer.options)
    if isinstance(answer, MediaAnswer):
        return answer.ref is not None
    return False


def empty_answer(question):
    return shape_for(question.question_type)()


def to_payload(question, answer) -> Optional[dict]:
    """
    Build the upsert payload for one answer.

    Media answers without a durable reference return None; a local preview
    reference must never reach the server.
    """
    payload = {'question_id': question.id}
    if isinstance(answer, TextAnswer):
        payload['answer_text'] = answer.text
    elif isinstance(answer, SingleChoiceAnswer):
        payload['selected_options'] = [answer.option] if answer.option is not None else []
    elif isinstance(answer, MultiChoiceAnswer):
        # Keep the authored option order so payloads are stable.
        payload['selected_options'] = [o for o in question.options if o in answer.options]
    elif isinstance(answer, MediaAnswer):
        if not answer.is_durable:
            return None
        payload['media_url'] = answer.durable_ref
        payload['file_name'] = answer.file_name
    else:
        raise ValidationError(f"Unsupported answer {answer!r}.", field='answer')
    return payload


def from_saved(question, saved):
    """Rebuild an answer value from a stored AnswerSnapshot."""
    shape = shape_for(question.question_type)
    if shape is TextAnswer:
        return TextAnswer(saved.answer_text)
    if shape is SingleChoiceAnswer:
        selected = saved.selected_options or []
        return SingleChoiceAnswer(selected[0] if selected else None)
    if shape is MultiChoiceAnswer:
        return MultiChoiceAnswer(frozenset(saved.selected_options or []))
    if saved.media_url:
        return MediaAnswer(durable_ref=saved.media_url, file_name=saved.file_name)
    return MediaAnswer()
