"""
Job factory: tokenizer output -> JobSpecs.

Groups that could not be tokenized and commands whose placeholders
cannot be resolved become rejected JobSpecs so the scheduler can finalize
them as FAILED while the rest of the run continues.
"""

import logging
from typing import Iterable, Iterator, Sequence

from jobfan.inputs.tokenizer import ArgumentGroup, RejectedGroup, TokenizedGroup
from jobfan.scheduler.entities import JobSpec
from jobfan.scheduler.errors import PlaceholderResolutionError
from .template import CommandTemplate

logger = logging.getLogger(__name__)


class JobFactory:
    """
    Renders JobSpecs from argument groups.

    Args:
        template: The command template
        transfer_templates: Templates naming local files to stage on a
            remote host (rendered unquoted)
        return_templates: Templates naming files to fetch back
    """

    def __init__(
        self,
        template: CommandTemplate,
        transfer_templates: Sequence[CommandTemplate] = (),
        return_templates: Sequence[CommandTemplate] = (),
    ):
        self.template = template
        self.transfer_templates = tuple(transfer_templates)
        self.return_templates = tuple(return_templates)

    def build(self, sequence_index: int, group: TokenizedGroup) -> JobSpec:
        """Build one JobSpec; never raises for per-job problems."""
        if isinstance(group, RejectedGroup):
            logger.warning(f"Job {sequence_index + 1} rejected: {group.error}")
            return JobSpec.rejected(sequence_index, group.error, group.texts)

        try:
            command = self.template.render(group, sequence_index)
            transfer = self._render_paths(self.transfer_templates, group, sequence_index)
            returns = self._render_paths(self.return_templates, group, sequence_index)
        except PlaceholderResolutionError as e:
            logger.warning(f"Job {sequence_index + 1} rejected: {e}")
            return JobSpec.rejected(sequence_index, e, group.texts)

        return JobSpec(
            sequence_index=sequence_index,
            raw_argument_group=group.texts,
            rendered_command=command,
            transfer_paths=transfer,
            return_paths=returns,
        )

    def jobs(self, groups: Iterable[tuple]) -> Iterator[JobSpec]:
        """Lazily build JobSpecs from (sequence_index, group) pairs."""
        for sequence_index, group in groups:
            yield self.build(sequence_index, group)

    @staticmethod
    def _render_paths(
        templates: Sequence[CommandTemplate],
        group: ArgumentGroup,
        sequence_index: int,
    ) -> tuple:
        paths = []
        for template in templates:
            rendered = template.render(group, sequence_index)
            if rendered:
                paths.append(rendered)
        return tuple(paths)
