"""
Persona rosters for the narrative, panel, and extraction collaboration rounds.
"""

from __future__ import annotations

from .collaboration import AgentPersona

NARRATIVE_PERSONAS: tuple[AgentPersona, ...] = (
    AgentPersona(
        name="PlotMaster",
        role="Story Structure Specialist",
        expertise=("plot development", "story pacing", "narrative structure", "conflict resolution"),
        temperature=0.7,
        max_tokens=800,
    ),
    AgentPersona(
        name="CharacterCraft",
        role="Character Development Expert",
        expertise=("character psychology", "dialogue", "character arcs", "personality development"),
        temperature=0.8,
        max_tokens=600,
    ),
    AgentPersona(
        name="WorldBuilder",
        role="World & Setting Creator",
        expertise=("world-building", "atmosphere", "visual descriptions", "environmental storytelling"),
        temperature=0.6,
        max_tokens=700,
    ),
    AgentPersona(
        name="EmotionWeaver",
        role="Emotional Resonance Specialist",
        expertise=("emotional impact", "tension building", "reader engagement", "mood creation"),
        temperature=0.9,
        max_tokens=500,
    ),
    AgentPersona(
        name="DialogueDirector",
        role="Dialogue & Interaction Expert",
        expertise=("natural dialogue", "character voice", "conversation flow", "subtext"),
        temperature=0.8,
        max_tokens=400,
    ),
    AgentPersona(
        name="CineMaestro",
        role="Cinematographer & Lighting Director",
        expertise=("visual composition", "scene lighting", "camera movement", "atmospheric mood"),
        temperature=0.65,
        max_tokens=500,
    ),
    AgentPersona(
        name="FrameFlow",
        role="Videography & Shot Continuity Expert",
        expertise=("shot continuity", "transitional flow", "visual pacing", "montage building"),
        temperature=0.7,
        max_tokens=500,
    ),
    AgentPersona(
        name="AngleArchitect",
        role="Camera Angle & Blocking Director",
        expertise=("camera angles", "character blocking", "focal hierarchy", "scene staging"),
        temperature=0.6,
        max_tokens=450,
    ),
    AgentPersona(
        name="CrowdCrafter",
        role="Background Character & Environment Designer",
        expertise=(
            "background characters",
            "environment continuity",
            "crowd dynamics",
            "visual ambience",
        ),
        temperature=0.75,
        max_tokens=550,
    ),
    AgentPersona(
        name="SpectrumLead",
        role="Visual Cohesion Coordinator",
        expertise=(
            "cross-department alignment",
            "style consistency",
            "production oversight",
            "quality assurance",
        ),
        temperature=0.55,
        max_tokens=600,
        coordinator=True,
    ),
)

PANEL_PERSONAS: tuple[AgentPersona, ...] = (
    AgentPersona(
        name="SceneDivider",
        role="Scene Structure Specialist",
        expertise=("scene transitions", "pacing", "story beats", "panel sequencing"),
        temperature=0.6,
        max_tokens=1000,
    ),
    AgentPersona(
        name="VisualDirector",
        role="Visual Composition Expert",
        expertise=("visual storytelling", "camera angles", "composition", "visual flow"),
        temperature=0.7,
        max_tokens=1000,
    ),
    AgentPersona(
        name="DialogueSplitter",
        role="Dialogue Distribution Specialist",
        expertise=("dialogue pacing", "speech bubbles", "conversation flow", "subtext"),
        temperature=0.8,
        max_tokens=1000,
    ),
    AgentPersona(
        name="ActionChoreographer",
        role="Action Sequence Expert",
        expertise=("action sequences", "movement flow", "dramatic moments", "climactic scenes"),
        temperature=0.7,
        max_tokens=1000,
    ),
)

EXTRACTION_PERSONAS: tuple[AgentPersona, ...] = (
    AgentPersona(
        name="CharacterDetective",
        role="Character Identification Specialist",
        expertise=(
            "character analysis",
            "personality traits",
            "character roles",
            "character relationships",
        ),
        temperature=0.6,
        max_tokens=800,
    ),
    AgentPersona(
        name="LocationScout",
        role="Setting & Environment Expert",
        expertise=("location identification", "environmental details", "atmosphere", "world-building"),
        temperature=0.5,
        max_tokens=800,
    ),
    AgentPersona(
        name="ObjectHunter",
        role="Object & Item Specialist",
        expertise=("prop identification", "item significance", "symbolic objects", "narrative objects"),
        temperature=0.6,
        max_tokens=800,
    ),
    AgentPersona(
        name="RelationshipMapper",
        role="Character Relationship Expert",
        expertise=(
            "relationship dynamics",
            "character connections",
            "social structures",
            "conflict sources",
        ),
        temperature=0.7,
        max_tokens=800,
    ),
)
