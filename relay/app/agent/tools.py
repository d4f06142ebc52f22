"""Design-analysis tools offered to the model.

Each tool is a pure function over the design snapshot the plugin sends
along with a request: it never touches the network or the document, it
only looks things up in the snapshot. Parameter and result models use
camelCase on the wire, matching the plugin's JSON.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MAX_SEARCH_MATCHES = 20
MAX_ACCESSIBILITY_ISSUES = 50
MAX_PALETTE_COLORS = 20
MAX_LISTED_COMPONENTS = 10

MIN_TEXT_SIZE_PX = 12
MIN_TOUCH_TARGET_PX = 44

Node = Dict[str, Any]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DesignContext(CamelModel):
    """Snapshot of the design the tools operate on."""
    page_data: Optional[Dict[str, Any]] = None
    selected_nodes: Optional[List[Node]] = None
    design_system: Optional[Dict[str, Any]] = None
    full_data: Optional[Dict[str, Any]] = None

    def page(self, key: str) -> Any:
        return (self.page_data or {}).get(key)


class ToolResult(CamelModel):
    success: bool = True
    error: Optional[str] = None


def _walk(nodes: List[Node]) -> Iterator[Node]:
    """Depth-first, parent before children."""
    for node in nodes:
        if not isinstance(node, dict):
            continue
        yield node
        children = node.get("children")
        if isinstance(children, list):
            yield from _walk(children)


def _nodes(value: Any) -> List[Node]:
    """Dict entries of a snapshot list; anything else in the snapshot is ignored."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _font_size(text: Node) -> Optional[float]:
    size = _number(text.get("fontSize"))
    return size if size else None


def _detached_count(components: List[Node]) -> int:
    return sum(1 for c in components if isinstance(c, dict) and c.get("detached"))


# analyzeNodeStructure

class AnalyzeNodeStructureParams(CamelModel):
    focus_area: Literal["all", "selection", "frames", "components"] = Field(
        description="Which nodes to focus analysis on"
    )
    include_children: bool = Field(default=True, description="Include child nodes in analysis")
    max_depth: int = Field(default=2, le=5, description="Maximum hierarchy depth to analyze")


class AnalyzeNodeStructureResult(ToolResult):
    focus_area: Optional[str] = None
    node_count: int = 0
    nodes: List[Node] = Field(default_factory=list)
    summary: Optional[str] = None


def analyze_node_structure(params: AnalyzeNodeStructureParams, context: DesignContext) -> AnalyzeNodeStructureResult:
    if context.page_data is None and context.selected_nodes is None:
        return AnalyzeNodeStructureResult(
            success=False,
            error="No design data available. Please ensure page data is loaded.",
        )

    frames = _nodes(context.page("framesHierarchical"))
    components = _nodes(context.page("components"))

    if params.focus_area == "selection" and context.selected_nodes is not None:
        nodes = context.selected_nodes
    elif params.focus_area == "frames" and frames:
        nodes = frames
    elif params.focus_area == "components" and components:
        nodes = components
    else:
        nodes = frames or context.selected_nodes or []

    return AnalyzeNodeStructureResult(
        focus_area=params.focus_area,
        node_count=len(nodes),
        nodes=nodes,
        summary=f"Analyzed {len(nodes)} {params.focus_area} nodes with depth {params.max_depth}",
    )


# searchByProperties

class SearchByPropertiesParams(CamelModel):
    type: Optional[Literal["FRAME", "TEXT", "RECTANGLE", "COMPONENT", "INSTANCE", "GROUP", "ANY"]] = None
    name_pattern: Optional[str] = Field(default=None, description="Regex pattern to match node names")
    has_auto_layout: Optional[bool] = None
    color_filter: Optional[str] = Field(default=None, description="Filter by fill color (hex or rgba)")
    text_content: Optional[str] = Field(default=None, description="Search for specific text content")

    @field_validator("name_pattern")
    @classmethod
    def validate_name_pattern(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid name pattern: {e}")
        return v


class NodeMatch(CamelModel):
    id: Any = None
    name: Optional[str] = None
    type: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class SearchByPropertiesResult(ToolResult):
    match_count: int = 0
    matches: List[NodeMatch] = Field(default_factory=list)
    truncated: bool = False


def _matches(node: Node, params: SearchByPropertiesParams, name_re: Optional[re.Pattern]) -> bool:
    if params.type and params.type != "ANY" and node.get("type") != params.type:
        return False
    if name_re is not None and not name_re.search(node.get("name") or ""):
        return False
    if params.has_auto_layout is not None and bool(node.get("autoLayout")) != params.has_auto_layout:
        return False
    if params.text_content:
        # Nodes without text content are not filtered out by a text query
        text = node.get("text") if isinstance(node.get("text"), dict) else {}
        content = text.get("content")
        if content and params.text_content not in content:
            return False
    return True


def search_by_properties(params: SearchByPropertiesParams, context: DesignContext) -> SearchByPropertiesResult:
    searchable = context.full_data or context.page_data
    if not searchable:
        return SearchByPropertiesResult(success=False, error="No data available for search")

    name_re = re.compile(params.name_pattern, re.IGNORECASE) if params.name_pattern else None
    found = [
        NodeMatch(
            id=node.get("id"),
            name=node.get("name"),
            type=node.get("type"),
            properties={
                "autoLayout": node.get("autoLayout"),
                "text": node.get("text"),
                "fillColor": node.get("fillColor"),
            },
        )
        for node in _walk(searchable.get("framesHierarchical") or [])
        if _matches(node, params, name_re)
    ]

    return SearchByPropertiesResult(
        match_count=len(found),
        matches=found[:MAX_SEARCH_MATCHES],
        truncated=len(found) > MAX_SEARCH_MATCHES,
    )


# getDesignSystem

class GetDesignSystemParams(CamelModel):
    include_colors: bool = True
    include_typography: bool = True
    include_components: bool = True
    include_spacing: bool = False


class Typography(CamelModel):
    font_families: List[str] = Field(default_factory=list)
    font_sizes: List[int | float] = Field(default_factory=list)


class ComponentSummary(CamelModel):
    count: int
    list: List[Node]


class GetDesignSystemResult(ToolResult):
    detected: str = "Unknown"
    confidence: float = 0
    colors: Optional[List[Any]] = None
    typography: Optional[Typography] = None
    components: Optional[ComponentSummary] = None


def get_design_system(params: GetDesignSystemParams, context: DesignContext) -> GetDesignSystemResult:
    design_system = context.design_system or {}
    result = GetDesignSystemResult(
        detected=design_system.get("detected") or "Unknown",
        confidence=design_system.get("confidence") or 0,
    )

    palette = context.page("colorPalette")
    if params.include_colors and isinstance(palette, list) and palette:
        result.colors = palette[:MAX_PALETTE_COLORS]

    text_content = _nodes(context.page("textContent"))
    if params.include_typography and text_content:
        families: List[str] = []
        sizes: set = set()
        for text in text_content:
            family = text.get("fontFamily")
            if isinstance(family, str) and family and family not in families:
                families.append(family)
            size = _font_size(text)
            if size is not None:
                sizes.add(size)
        result.typography = Typography(font_families=families, font_sizes=sorted(sizes))

    components = _nodes(context.page("components"))
    if params.include_components and components:
        result.components = ComponentSummary(
            count=len(components), list=components[:MAX_LISTED_COMPONENTS]
        )

    return result


# getFlowAnalysis

class GetFlowAnalysisParams(CamelModel):
    include_dead_ends: bool = True
    include_entry_points: bool = True


class GetFlowAnalysisResult(ToolResult):
    total_connections: int = 0
    connections: List[Any] = Field(default_factory=list)
    dead_ends: Optional[List[Any]] = None
    entry_points: Optional[List[Any]] = None
    summary: Optional[str] = None


def get_flow_analysis(params: GetFlowAnalysisParams, context: DesignContext) -> GetFlowAnalysisResult:
    connections = context.page("connections")
    if not isinstance(connections, list) or not connections:
        return GetFlowAnalysisResult(
            success=False,
            error="No flow data available. Ensure prototype connections are analyzed.",
        )

    dead_ends = context.page("deadEnds")
    entry_points = context.page("entryPoints")
    return GetFlowAnalysisResult(
        total_connections=len(connections),
        connections=connections,
        dead_ends=dead_ends if params.include_dead_ends else None,
        entry_points=entry_points if params.include_entry_points else None,
        summary=(
            f"Found {len(connections)} connections, {len(dead_ends or [])} dead ends, "
            f"{len(entry_points or [])} entry points"
        ),
    )


# validateAccessibility

class ValidateAccessibilityParams(CamelModel):
    level: Literal["A", "AA", "AAA"] = "AA"
    check_contrast: bool = True
    check_text_size: bool = True
    check_touch_targets: bool = True


class AccessibilityIssue(CamelModel):
    node_id: Any = None
    node_name: Optional[str] = None
    type: Literal["contrast", "text-size", "touch-target"]
    severity: Literal["high", "medium", "low"]
    message: str
    wcag_level: str


class ValidateAccessibilityResult(ToolResult):
    wcag_level: str = "AA"
    total_issues: int = 0
    issues: List[AccessibilityIssue] = Field(default_factory=list)
    summary: Optional[str] = None


def _node_issues(node: Node, params: ValidateAccessibilityParams) -> Iterator[AccessibilityIssue]:
    node_id, node_name = node.get("id"), node.get("name")

    # Contrast needs the background too; flag every coloured text for review
    if params.check_contrast and node.get("type") == "TEXT" and node.get("fillColor"):
        yield AccessibilityIssue(
            node_id=node_id, node_name=node_name, type="contrast", severity="high",
            message="Contrast ratio needs verification", wcag_level=params.level,
        )

    text = node.get("text")
    font_size = text.get("fontSize") if isinstance(text, dict) else None
    if params.check_text_size and isinstance(font_size, (int, float)) and font_size < MIN_TEXT_SIZE_PX:
        yield AccessibilityIssue(
            node_id=node_id, node_name=node_name, type="text-size", severity="medium",
            message=f"Text size {font_size:g}px is below recommended minimum ({MIN_TEXT_SIZE_PX}px)",
            wcag_level="AA",
        )

    width, height = _number(node.get("absoluteWidth")), _number(node.get("absoluteHeight"))
    if params.check_touch_targets and node.get("type") == "INSTANCE" and width and height:
        if width < MIN_TOUCH_TARGET_PX or height < MIN_TOUCH_TARGET_PX:
            yield AccessibilityIssue(
                node_id=node_id, node_name=node_name, type="touch-target", severity="high",
                message=(
                    f"Touch target {width:g}x{height:g}px is below WCAG minimum "
                    f"({MIN_TOUCH_TARGET_PX}x{MIN_TOUCH_TARGET_PX}px)"
                ),
                wcag_level="AA",
            )


def validate_accessibility(params: ValidateAccessibilityParams, context: DesignContext) -> ValidateAccessibilityResult:
    targets = context.selected_nodes or context.page("framesHierarchical") or []
    issues = [issue for node in _walk(targets) for issue in _node_issues(node, params)]

    return ValidateAccessibilityResult(
        wcag_level=params.level,
        total_issues=len(issues),
        issues=issues[:MAX_ACCESSIBILITY_ISSUES],
        summary=f"Found {len(issues)} accessibility issues at WCAG {params.level} level",
    )


# analyzeDesignQuality

class AnalyzeDesignQualityParams(CamelModel):
    check_consistency: bool = True
    check_hierarchy: bool = True
    check_spacing: bool = True
    check_alignment: bool = True


class QualityFinding(CamelModel):
    category: Literal["consistency", "hierarchy", "spacing"]
    score: int
    message: str


class AnalyzeDesignQualityResult(ToolResult):
    score: int = 0
    max_score: int = 100
    findings: List[QualityFinding] = Field(default_factory=list)


def analyze_design_quality(params: AnalyzeDesignQualityParams, context: DesignContext) -> AnalyzeDesignQualityResult:
    findings: List[QualityFinding] = []

    components = _nodes(context.page("components"))
    if params.check_consistency and components:
        detached = _detached_count(components)
        findings.append(QualityFinding(
            category="consistency",
            score=25 if detached == 0 else max(0, 25 - detached * 2),
            message=f"{detached} detached component instances found",
        ))

    text_content = _nodes(context.page("textContent"))
    if params.check_hierarchy and text_content:
        unique_sizes = {size for size in map(_font_size, text_content) if size is not None}
        findings.append(QualityFinding(
            category="hierarchy",
            score=25 if 3 <= len(unique_sizes) <= 8 else 15,
            message=f"{len(unique_sizes)} unique font sizes used (optimal: 3-8)",
        ))

    frames = _nodes(context.page("framesHierarchical"))
    if params.check_spacing and frames:
        auto_layout = sum(1 for f in frames if f.get("autoLayout"))
        findings.append(QualityFinding(
            category="spacing",
            score=25 if auto_layout > 0 else 10,
            message=f"{auto_layout} frames use auto-layout",
        ))

    # Alignment is not scored; check_alignment has no effect
    return AnalyzeDesignQualityResult(score=sum(f.score for f in findings), findings=findings)


# generateModificationPlan

class Modification(CamelModel):
    action: Literal["modify", "create", "delete", "group"]
    node_id: Optional[str] = None
    properties: Optional[Dict[str, Any]] = None


class GenerateModificationPlanParams(CamelModel):
    goal: str = Field(description="What you want to achieve")
    target_nodes: Optional[List[str]] = Field(default=None, description="Specific node IDs to modify")
    modifications: List[Modification]


class ModificationPlan(CamelModel):
    target_count: int
    modifications: List[Modification]
    execution_mode: Literal["requires_approval"] = "requires_approval"
    estimated_changes: int


class GenerateModificationPlanResult(ToolResult):
    goal: str
    plan: ModificationPlan
    message: str


def generate_modification_plan(
    params: GenerateModificationPlanParams, context: DesignContext
) -> GenerateModificationPlanResult:
    """Package proposed changes for the plugin; nothing is applied here."""
    count = len(params.modifications)
    return GenerateModificationPlanResult(
        goal=params.goal,
        plan=ModificationPlan(
            target_count=len(params.target_nodes or []) or count,
            modifications=params.modifications,
            estimated_changes=count,
        ),
        message=f"Generated modification plan with {count} changes. Review and approve to execute.",
    )


# suggestImprovements

class SuggestImprovementsParams(CamelModel):
    focus_area: Literal["accessibility", "design-system", "visual-hierarchy", "spacing", "all"]
    priority: Literal["critical", "high", "medium", "all"] = "all"


class Suggestion(CamelModel):
    priority: Literal["critical", "high", "medium", "low"]
    category: str
    title: str
    description: str
    affected_nodes: int
    effort: Literal["low", "medium", "high"]


class SuggestImprovementsResult(ToolResult):
    suggestion_count: int = 0
    suggestions: List[Suggestion] = Field(default_factory=list)
    summary: Optional[str] = None


def suggest_improvements(params: SuggestImprovementsParams, context: DesignContext) -> SuggestImprovementsResult:
    focus = params.focus_area
    suggestions: List[Suggestion] = []

    if focus in ("accessibility", "all"):
        suggestions.append(Suggestion(
            priority="high", category="accessibility",
            title="Improve color contrast",
            description="Several text elements have insufficient contrast ratios",
            affected_nodes=5, effort="low",
        ))

    components = _nodes(context.page("components"))
    if focus in ("design-system", "all") and components:
        detached = _detached_count(components)
        if detached > 0:
            suggestions.append(Suggestion(
                priority="medium", category="design-system",
                title="Reconnect detached components",
                description=f"{detached} component instances are detached from main",
                affected_nodes=detached, effort="medium",
            ))

    if focus in ("visual-hierarchy", "all"):
        suggestions.append(Suggestion(
            priority="medium", category="visual-hierarchy",
            title="Improve visual hierarchy",
            description="Consider increasing contrast between heading and body text",
            affected_nodes=3, effort="low",
        ))

    if params.priority != "all":
        # Critical suggestions survive every priority filter
        suggestions = [s for s in suggestions if s.priority in (params.priority, "critical")]

    return SuggestImprovementsResult(
        suggestion_count=len(suggestions),
        suggestions=suggestions,
        summary=f"Generated {len(suggestions)} {params.priority} priority suggestions for {focus}",
    )


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool as offered to the model: name, prose, typed input, executor."""
    name: str
    description: str
    parameters: Type[BaseModel]
    execute: Callable[[Any, DesignContext], ToolResult]

    def to_tool_definition(self) -> Dict[str, Any]:
        """Tool entry in the Messages API ``tools`` format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters.model_json_schema(by_alias=True),
        }


DESIGN_TOOLS: List[ToolDescriptor] = [
    # Data retrieval
    ToolDescriptor(
        name="analyzeNodeStructure",
        description=(
            "Analyze the structure and properties of nodes in the current context. "
            "Returns hierarchical data, spatial relationships, and properties."
        ),
        parameters=AnalyzeNodeStructureParams,
        execute=analyze_node_structure,
    ),
    ToolDescriptor(
        name="searchByProperties",
        description=(
            "Search for nodes matching specific properties or patterns "
            "(type, name, color, text content, etc.)"
        ),
        parameters=SearchByPropertiesParams,
        execute=search_by_properties,
    ),
    ToolDescriptor(
        name="getDesignSystem",
        description=(
            "Retrieve design system information including color palette, typography, "
            "spacing tokens, and component library"
        ),
        parameters=GetDesignSystemParams,
        execute=get_design_system,
    ),
    ToolDescriptor(
        name="getFlowAnalysis",
        description="Analyze user flows, navigation connections, and prototype interactions between screens",
        parameters=GetFlowAnalysisParams,
        execute=get_flow_analysis,
    ),
    # Validation
    ToolDescriptor(
        name="validateAccessibility",
        description=(
            "Check WCAG accessibility compliance including contrast ratios, text sizes, "
            "interactive element sizing, and semantic structure"
        ),
        parameters=ValidateAccessibilityParams,
        execute=validate_accessibility,
    ),
    ToolDescriptor(
        name="analyzeDesignQuality",
        description=(
            "Evaluate overall design quality including consistency, hierarchy, spacing, "
            "alignment, and design system compliance"
        ),
        parameters=AnalyzeDesignQualityParams,
        execute=analyze_design_quality,
    ),
    # Modification
    ToolDescriptor(
        name="generateModificationPlan",
        description="Generate a plan for modifying designs (returns JSON commands that the plugin will execute)",
        parameters=GenerateModificationPlanParams,
        execute=generate_modification_plan,
    ),
    ToolDescriptor(
        name="suggestImprovements",
        description="Suggest specific improvements based on analysis",
        parameters=SuggestImprovementsParams,
        execute=suggest_improvements,
    ),
]
