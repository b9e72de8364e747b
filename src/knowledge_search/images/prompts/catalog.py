"""Character catalog: poses, outfits, footwear, props and storyboard frames."""

from typing import Literal

from pydantic import BaseModel, Field

FrameType = Literal["standard", "onboarding", "sequence"]


class PoseDefinition(BaseModel):
    id: str
    name: str
    description: str
    category: str = "primary"
    compatible_outfits: list[str] = Field(default_factory=list)
    prompt_fragment: str


class OutfitDefinition(BaseModel):
    id: str
    name: str
    description: str
    compatible_footwear: list[str] = Field(default_factory=list)
    prompt_fragment: str


class FootwearDefinition(BaseModel):
    id: str
    name: str
    description: str
    brand: str
    model: str
    compatible_outfits: list[str] = Field(default_factory=list)
    prompt_fragment: str


class PropDefinition(BaseModel):
    id: str
    name: str
    description: str
    category: str = "onboarding"
    compatible_poses: list[str] = Field(default_factory=list)
    prompt_fragment: str


class FrameDefinition(BaseModel):
    """A storyboard frame with fixed staging for the character."""

    id: str
    name: str
    sequence: str
    location: str
    positioning: str
    limb_metrics: str
    pose_specifics: str
    facial_expression: str
    lighting: str
    camera: str
    environmental_touches: str
    voiceover: str = ""
    required_props: list[str] = Field(default_factory=list)
    continuity_notes: str | None = None


class ImageGenerationParams(BaseModel):
    """Parameters a user picks to generate a character image."""

    pose: str = ""
    outfit: str = ""
    footwear: str = ""
    prop: str | None = None
    frame_type: FrameType | None = Field(default=None, alias="frameType")
    frame_id: str | None = Field(default=None, alias="frameId")

    model_config = {"populate_by_name": True}

    def cache_key_fields(self) -> dict[str, str | None]:
        return {
            "pose": self.pose,
            "outfit": self.outfit,
            "footwear": self.footwear,
            "prop": self.prop or None,
            "frameType": self.frame_type or None,
            "frameId": self.frame_id or None,
        }


class PromptOptions(BaseModel):
    poses: list[PoseDefinition] = Field(default_factory=list)
    outfits: list[OutfitDefinition] = Field(default_factory=list)
    footwear: list[FootwearDefinition] = Field(default_factory=list)
    props: list[PropDefinition] = Field(default_factory=list)
    frames: list[FrameDefinition] = Field(default_factory=list)


_ALL_OUTFITS = ["hoodie-sweatpants", "tshirt-shorts", "windbreaker-shorts"]

DEFAULT_POSES = [
    PoseDefinition(
        id="arms-crossed",
        name="Arms Crossed",
        description="Confident stance with arms crossed over chest",
        compatible_outfits=_ALL_OUTFITS,
        prompt_fragment=(
            "Standing confidently with arms crossed over chest, displaying authority and "
            "self-assurance, perfect posture with shoulders back"
        ),
    ),
    PoseDefinition(
        id="pointing-forward",
        name="Pointing Forward",
        description="Dynamic pose pointing forward with determination",
        compatible_outfits=_ALL_OUTFITS,
        prompt_fragment=(
            "Pointing forward with right hand extended, determined expression, left hand "
            "at side, dynamic leadership pose"
        ),
    ),
    PoseDefinition(
        id="sitting-on-rock",
        name="Sitting on Rock",
        description="Relaxed pose sitting on a cave rock formation",
        compatible_outfits=_ALL_OUTFITS,
        prompt_fragment=(
            "Sitting comfortably on a large granite rock formation, relaxed but alert "
            "posture, hands resting naturally"
        ),
    ),
    PoseDefinition(
        id="holding-cave-map",
        name="Holding Cave Map",
        description="Onboarding pose holding and examining cave map",
        category="onboarding",
        compatible_outfits=["hoodie-sweatpants", "windbreaker-shorts"],
        prompt_fragment=(
            "Holding an ancient cave map with both hands, studying it intently, slight "
            "forward lean showing engagement"
        ),
    ),
]

DEFAULT_OUTFITS = [
    OutfitDefinition(
        id="hoodie-sweatpants",
        name="Hoodie + Sweatpants",
        description="Casual comfort outfit with hooded sweatshirt and matching sweatpants",
        compatible_footwear=[
            "air-jordan-1-chicago",
            "air-jordan-11-bred",
            "nike-air-max-90",
            "adidas-ultraboost",
        ],
        prompt_fragment=(
            "Wearing a comfortable gray hooded sweatshirt with drawstrings, matching gray "
            "sweatpants with elastic waistband, relaxed fit clothing"
        ),
    ),
    OutfitDefinition(
        id="tshirt-shorts",
        name="T-shirt + Shorts",
        description="Active casual outfit with fitted t-shirt and athletic shorts",
        compatible_footwear=["air-jordan-1-chicago", "nike-air-max-90", "adidas-ultraboost"],
        prompt_fragment=(
            "Wearing a fitted gray t-shirt with crew neck, athletic shorts in matching "
            "gray, comfortable active wear"
        ),
    ),
    OutfitDefinition(
        id="windbreaker-shorts",
        name="Windbreaker + Shorts",
        description="Athletic outfit with lightweight windbreaker and sports shorts",
        compatible_footwear=["air-jordan-11-bred", "nike-air-max-90", "adidas-ultraboost"],
        prompt_fragment=(
            "Wearing a lightweight gray windbreaker jacket with subtle texture, athletic "
            "shorts, sporty and functional appearance"
        ),
    ),
]

DEFAULT_FOOTWEAR = [
    FootwearDefinition(
        id="air-jordan-1-chicago",
        name="Air Jordan 1 Chicago",
        description="Classic Air Jordan 1 in Chicago colorway",
        brand="Nike",
        model="Air Jordan 1",
        compatible_outfits=["hoodie-sweatpants", "tshirt-shorts"],
        prompt_fragment=(
            "Wearing authentic Air Jordan 1 sneakers in Chicago colorway (white, black, "
            "and red), high-top basketball shoes with Nike swoosh, premium leather construction"
        ),
    ),
    FootwearDefinition(
        id="air-jordan-11-bred",
        name="Air Jordan 11 Bred",
        description="Air Jordan 11 in Bred (black and red) colorway",
        brand="Nike",
        model="Air Jordan 11",
        compatible_outfits=["hoodie-sweatpants", "windbreaker-shorts"],
        prompt_fragment=(
            "Wearing Air Jordan 11 sneakers in Bred colorway (black patent leather with "
            "red accents), iconic basketball shoes with carbon fiber plate"
        ),
    ),
    FootwearDefinition(
        id="nike-air-max-90",
        name="Nike Air Max 90",
        description="Classic Nike Air Max 90 running shoes",
        brand="Nike",
        model="Air Max 90",
        compatible_outfits=_ALL_OUTFITS,
        prompt_fragment=(
            "Wearing Nike Air Max 90 sneakers in classic white and gray colorway, visible "
            "air cushioning in heel, retro running shoe design"
        ),
    ),
    FootwearDefinition(
        id="adidas-ultraboost",
        name="Adidas Ultraboost",
        description="Modern Adidas Ultraboost running shoes",
        brand="Adidas",
        model="Ultraboost",
        compatible_outfits=_ALL_OUTFITS,
        prompt_fragment=(
            "Wearing Adidas Ultraboost sneakers in core black colorway, Boost midsole "
            "technology, Primeknit upper, three stripes branding"
        ),
    ),
]

DEFAULT_PROPS = [
    PropDefinition(
        id="cave-map",
        name="Cave Map",
        description="Ancient parchment map of cave systems",
        compatible_poses=["holding-cave-map", "pointing-forward"],
        prompt_fragment=(
            "Holding an aged parchment cave map with intricate tunnel drawings, mysterious "
            "symbols, and weathered edges"
        ),
    ),
    PropDefinition(
        id="glowing-hourglass",
        name="Glowing Hourglass",
        description="Mystical hourglass with glowing sand",
        compatible_poses=["arms-crossed", "holding-cave-map"],
        prompt_fragment=(
            "Mystical hourglass with glowing amber sand, ornate bronze frame, emanating "
            "soft magical light"
        ),
    ),
    PropDefinition(
        id="stone-totem",
        name="Stone Totem",
        description="Ancient carved stone totem with mystical properties",
        compatible_poses=["sitting-on-rock", "arms-crossed"],
        prompt_fragment=(
            "Ancient stone totem with intricate carvings, mystical runes, weathered "
            "granite surface with subtle magical glow"
        ),
    ),
]

DEFAULT_FRAMES = [
    FrameDefinition(
        id="01A",
        name="Welcome Introduction",
        sequence="onboarding-welcome",
        location="Central cave chamber with dramatic crystal formations overhead",
        positioning="Center frame, facing camera at slight angle, confident stance",
        limb_metrics="Arms at sides, slight forward lean, feet shoulder-width apart",
        pose_specifics="Welcoming gesture with slight smile, eyes making direct contact with viewer",
        facial_expression=(
            "Warm, confident smile with bright red eyes showing intelligence and friendliness"
        ),
        lighting="Dramatic overhead crystal lighting creating heroic silhouette, warm amber glow",
        camera="Medium shot, eye level, slight low angle to emphasize authority",
        environmental_touches=(
            "Sparkling crystal formations, subtle mist, ancient cave architecture visible"
        ),
        voiceover=(
            "Welcome to the depths of knowledge, explorer. I am Capitão Caverna, your guide "
            "through these ancient halls of wisdom."
        ),
        continuity_notes="Establish character presence and cave environment for subsequent frames",
    ),
    FrameDefinition(
        id="02B",
        name="Map Presentation",
        sequence="onboarding-navigation",
        location="Near cave wall with ancient markings, map pedestal visible",
        positioning="Three-quarter turn toward map, gesture toward cave systems",
        limb_metrics="Right arm extended toward map, left hand at side, slight step forward",
        pose_specifics="Presenting cave map with authority, educational pose",
        facial_expression=(
            "Focused and instructive, slight smile, eyes alternating between map and viewer"
        ),
        lighting="Focused lighting on map and character, dramatic shadows on cave wall",
        camera="Medium-wide shot showing both character and map context",
        environmental_touches=(
            "Ancient cave paintings visible on walls, map pedestal with mystical glow"
        ),
        voiceover=(
            "These passages hold centuries of accumulated knowledge. Let me show you how "
            "to navigate them effectively."
        ),
        required_props=["cave-map"],
        continuity_notes="Maintain consistent lighting direction from frame 01A",
    ),
]
