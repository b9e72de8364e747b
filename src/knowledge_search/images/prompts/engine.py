"""Builds character prompts from catalog selections.

A prompt is assembled from fixed foundation blocks plus the fragments of
the selected pose, outfit, footwear, optional prop and optional storyboard
frame. Selections are validated for existence and mutual compatibility
before anything is built.
"""

import logging
from dataclasses import dataclass, field

from knowledge_search.images.exceptions import PromptValidationError
from knowledge_search.images.prompts import foundation
from knowledge_search.images.prompts.catalog import (
    DEFAULT_FOOTWEAR,
    DEFAULT_FRAMES,
    DEFAULT_OUTFITS,
    DEFAULT_POSES,
    DEFAULT_PROPS,
    FootwearDefinition,
    FrameDefinition,
    ImageGenerationParams,
    OutfitDefinition,
    PoseDefinition,
    PromptOptions,
    PropDefinition,
)
from knowledge_search.images.prompts.fitting import (
    SECTION_BREAK,
    TERM_SEPARATOR,
    join_negative,
    negative_terms,
)

logger = logging.getLogger(__name__)

FALLBACK_SUGGESTION = "Please check parameter compatibility and try again"


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


class PromptTemplateEngine:
    """Validates selections and renders the full generation prompt."""

    def __init__(self, load_defaults: bool = True):
        self.poses: dict[str, PoseDefinition] = {}
        self.outfits: dict[str, OutfitDefinition] = {}
        self.footwear: dict[str, FootwearDefinition] = {}
        self.props: dict[str, PropDefinition] = {}
        self.frames: dict[str, FrameDefinition] = {}
        if load_defaults:
            for pose in DEFAULT_POSES:
                self.add_pose(pose)
            for outfit in DEFAULT_OUTFITS:
                self.add_outfit(outfit)
            for shoe in DEFAULT_FOOTWEAR:
                self.add_footwear(shoe)
            for prop in DEFAULT_PROPS:
                self.add_prop(prop)
            for frame in DEFAULT_FRAMES:
                self.add_frame(frame)

    def add_pose(self, pose: PoseDefinition) -> None:
        self.poses[pose.id] = pose

    def add_outfit(self, outfit: OutfitDefinition) -> None:
        self.outfits[outfit.id] = outfit

    def add_footwear(self, footwear: FootwearDefinition) -> None:
        self.footwear[footwear.id] = footwear

    def add_prop(self, prop: PropDefinition) -> None:
        self.props[prop.id] = prop

    def add_frame(self, frame: FrameDefinition) -> None:
        self.frames[frame.id] = frame

    def get_frame(self, frame_id: str) -> FrameDefinition | None:
        return self.frames.get(frame_id)

    def validate(self, params: ImageGenerationParams) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        suggestions: list[str] = []

        if not params.pose.strip():
            errors.append("Pose is required")
            suggestions.append("Select a pose from the available options")
        if not params.outfit.strip():
            errors.append("Outfit is required")
            suggestions.append("Select an outfit from the available options")
        if not params.footwear.strip():
            errors.append("Footwear is required")
            suggestions.append("Select footwear from the available options")

        pose = self.poses.get(params.pose)
        outfit = self.outfits.get(params.outfit)
        footwear = self.footwear.get(params.footwear)
        prop = self.props.get(params.prop) if params.prop else None
        frame = self.frames.get(params.frame_id) if params.frame_id else None

        if params.pose and pose is None:
            errors.append(f'Pose "{params.pose}" not found')
        if params.outfit and outfit is None:
            errors.append(f'Outfit "{params.outfit}" not found')
        if params.footwear and footwear is None:
            errors.append(f'Footwear "{params.footwear}" not found')
        if params.prop and prop is None:
            errors.append(f'Prop "{params.prop}" not found')
        if params.frame_id and frame is None:
            errors.append(f'Frame "{params.frame_id}" not found')

        if pose and outfit and outfit.id not in pose.compatible_outfits:
            errors.append(f'Outfit "{outfit.name}" is not compatible with pose "{pose.name}"')
            suggestions.append(
                f"Try one of these compatible outfits: {', '.join(pose.compatible_outfits)}"
            )

        if outfit and footwear:
            if footwear.id not in outfit.compatible_footwear:
                errors.append(
                    f'Footwear "{footwear.name}" is not compatible with outfit "{outfit.name}"'
                )
                suggestions.append(
                    "Try one of these compatible footwear options: "
                    f"{', '.join(outfit.compatible_footwear)}"
                )
            if outfit.id not in footwear.compatible_outfits:
                warnings.append(
                    f'Footwear "{footwear.name}" may not look optimal with outfit "{outfit.name}"'
                )

        if prop and pose and pose.id not in prop.compatible_poses:
            errors.append(f'Prop "{prop.name}" is not compatible with pose "{pose.name}"')
            suggestions.append(
                f"Try one of these compatible poses: {', '.join(prop.compatible_poses)}"
            )

        if frame:
            for required_id in frame.required_props:
                if params.prop != required_id:
                    required = self.props.get(required_id)
                    label = required.name if required else required_id
                    errors.append(f'Frame "{frame.name}" requires prop "{label}"')
                    suggestions.append("Add the required prop to generate this frame")
            if frame.id.startswith("01") and params.frame_type != "onboarding":
                warnings.append(
                    'Frame appears to be an onboarding frame but frameType is not set to "onboarding"'
                )
                suggestions.append('Set frameType to "onboarding" for consistency')

        if params.frame_type in ("onboarding", "sequence") and not params.frame_id:
            errors.append(f"Frame ID is required for {params.frame_type} frame type")
            if params.frame_type == "onboarding":
                suggestions.append("Select a specific frame ID for onboarding sequences")
            else:
                suggestions.append("Select a specific frame ID for sequence generation")

        if errors and not suggestions:
            suggestions.append(FALLBACK_SUGGESTION)

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
        )

    def build_prompt(self, params: ImageGenerationParams) -> str:
        """Render the full prompt, ending with the negative prompt section.

        Sections run from most to least essential so that providers with a
        short prompt limit can drop from the tail.

        Raises:
            PromptValidationError: If the selections are invalid
        """
        validation = self.validate(params)
        if not validation.is_valid:
            raise PromptValidationError(validation.errors, validation.warnings)

        pose = self.poses[params.pose]
        outfit = self.outfits[params.outfit]
        footwear = self.footwear[params.footwear]
        prop = self.props.get(params.prop) if params.prop else None
        frame = self.frames.get(params.frame_id) if params.frame_id else None

        parts = [
            foundation.CHARACTER,
            pose.prompt_fragment,
            outfit.prompt_fragment,
            footwear.prompt_fragment,
        ]
        if prop:
            parts.append(prop.prompt_fragment)
        if frame:
            parts.append(self._frame_block(frame))
        parts.append(
            foundation.TECHNICAL_SPECS.get(params.frame_type or "standard")
            or foundation.TECHNICAL_SPECS["standard"]
        )
        parts.append(foundation.SAFEGUARDS)
        parts.append(foundation.BRAND)
        parts.append(foundation.ENVIRONMENT)
        parts.append(foundation.TECHNICAL_BOOST)

        return join_negative(SECTION_BREAK.join(parts), self._negative_prompt(params))

    def build_frame_prompt(self, frame_id: str, params: ImageGenerationParams) -> str:
        """Render a prompt for a storyboard frame, deriving its frame type.

        Raises:
            KeyError: If the frame does not exist
            PromptValidationError: If the selections are invalid
        """
        frame = self.frames.get(frame_id)
        if frame is None:
            raise KeyError(f"Frame {frame_id} not found")
        frame_type = "onboarding" if "onboarding" in frame.sequence else "sequence"
        frame_params = params.model_copy(update={"frame_id": frame_id, "frame_type": frame_type})
        return self.build_prompt(frame_params)

    @staticmethod
    def _frame_block(frame: FrameDefinition) -> str:
        lines = [
            f"EXACT LOCATION: {frame.location}",
            f"CHARACTER POSITIONING: {frame.positioning}",
            f"LIMB METRICS: {frame.limb_metrics}",
            f"POSE SPECIFICS: {frame.pose_specifics}",
            f"FACIAL EXPRESSION: {frame.facial_expression}",
            f"LIGHTING ON CHARACTER: {frame.lighting}",
            f"CAMERA: {frame.camera}",
            f"ENVIRONMENTAL TOUCHES: {frame.environmental_touches}",
        ]
        if frame.continuity_notes:
            lines.append(f"CONTINUITY: {frame.continuity_notes}")
        return "\n".join(lines)

    @staticmethod
    def _negative_prompt(params: ImageGenerationParams) -> str:
        negatives = foundation.NEGATIVE_PROMPTS
        elements = [
            negatives["global"],
            negatives["hands"],
            negatives["anatomy"],
            negatives["quality"],
            negatives["consistency"],
        ]
        extra = foundation.FRAME_TYPE_NEGATIVES.get(params.frame_type or "")
        if extra:
            elements.append(extra)
        return TERM_SEPARATOR.join(negative_terms(TERM_SEPARATOR.join(elements)))

    def available_options(self) -> PromptOptions:
        return PromptOptions(
            poses=list(self.poses.values()),
            outfits=list(self.outfits.values()),
            footwear=list(self.footwear.values()),
            props=list(self.props.values()),
            frames=list(self.frames.values()),
        )

    def compatible_options(
        self,
        pose: str | None = None,
        outfit: str | None = None,
        frame_type: str | None = None,
    ) -> dict[str, list]:
        """Options that fit the current partial selection.

        Only the categories constrained by the given selections are returned.
        """
        compatible: dict[str, list] = {}

        selected_pose = self.poses.get(pose) if pose else None
        if selected_pose:
            compatible["outfits"] = [
                o for o in self.outfits.values() if o.id in selected_pose.compatible_outfits
            ]
            compatible["props"] = [
                p for p in self.props.values() if selected_pose.id in p.compatible_poses
            ]

        selected_outfit = self.outfits.get(outfit) if outfit else None
        if selected_outfit:
            compatible["footwear"] = [
                f for f in self.footwear.values() if f.id in selected_outfit.compatible_footwear
            ]

        if frame_type:
            if frame_type in ("onboarding", "sequence"):
                compatible["frames"] = [
                    f for f in self.frames.values() if frame_type in f.sequence
                ]
            else:
                compatible["frames"] = list(self.frames.values())

        return compatible


_engine: PromptTemplateEngine | None = None


def get_prompt_engine() -> PromptTemplateEngine:
    """Get or create the shared engine with the default catalog."""
    global _engine
    if _engine is None:
        _engine = PromptTemplateEngine()
    return _engine
