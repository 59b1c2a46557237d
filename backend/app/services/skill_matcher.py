"""Deterministic skill matching between a developer and a role.

Role skills come from four sources: requirements, skills, company
specialties, and tech terms found in the description. The score is the share
of the developer's skills found among them, so a developer with 4 of their 5
skills listed scores 80 regardless of how long the role's list is.
"""

import re

from app.models import MatchResult, Role

_TECH_PATTERNS = [
    # Languages
    r"JavaScript|TypeScript|Python|Java|C#|C\+\+|PHP|Ruby|Go|Rust|Swift|Kotlin|Scala|Dart|R|MATLAB",
    # Frontend frameworks
    r"React|Angular|Vue|Svelte|Ember|jQuery|Bootstrap|Tailwind|Next\.js|Nuxt\.js|Gatsby",
    # Backend frameworks
    r"Node\.js|Express|Django|Flask|FastAPI|Spring|Laravel|Rails|ASP\.NET|Gin|Echo",
    # Databases
    r"MongoDB|PostgreSQL|MySQL|Redis|SQLite|Oracle|SQL Server|Cassandra|DynamoDB|Elasticsearch",
    # Cloud & DevOps
    r"AWS|Azure|Google Cloud|GCP|Docker|Kubernetes|Jenkins|GitLab|CI/CD|Terraform|Ansible",
    # Other
    r"Git|REST|GraphQL|API|Microservices|Agile|Scrum|TDD|Linux|Windows|MacOS",
    # Abbreviations
    r"JS|TS|SQL|NoSQL|HTML|CSS|SASS|SCSS|XML|JSON|YAML",
]
_TECH_RES = [re.compile(rf"(?<![\w.+#])(?:{p})(?![\w+#])", re.IGNORECASE) for p in _TECH_PATTERNS]

_UPPERCASE_TERMS = {"JS", "TS", "SQL", "API", "REST", "XML", "JSON", "YAML", "HTML", "CSS"}
_GENERIC_TERMS = (
    "frontend", "backend", "fullstack", "full-stack", "database",
    "cloud", "devops", "mobile", "web", "testing",
)


def extract_tech_terms(description: str) -> list[str]:
    """Pull known technology names out of free text, de-duplicated in order found."""
    terms: list[str] = []
    for pattern in _TECH_RES:
        for match in pattern.findall(description):
            upper = match.upper()
            terms.append(upper if upper in _UPPERCASE_TERMS else match)

    lowered = description.lower()
    terms.extend(term for term in _GENERIC_TERMS if term in lowered)
    if "api" in lowered:
        terms.append("API")
    return list(dict.fromkeys(terms))


def extract_role_skills(role: Role) -> list[str]:
    skills = [*role.requirements, *role.skills, *role.company.specialties]
    if role.description:
        skills.extend(extract_tech_terms(role.description))
    return list(dict.fromkeys(s.strip() for s in skills if s and s.strip()))


def calculate_match(user_skills: list[str], role: Role) -> MatchResult:
    role_skills = extract_role_skills(role)
    normalized_role = {s.lower() for s in role_skills}

    # original casing of the developer's skill is kept
    matched = [s for s in user_skills if s.strip().lower() in normalized_role]
    score = round(len(matched) / len(user_skills) * 100) if user_skills else 0
    return MatchResult(role_id=role.id, score=score, matched_skills=matched, role_skills=role_skills)
