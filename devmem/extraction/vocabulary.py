from devmem.graph.models import RelationType

# Lowercased surface form -> canonical display name.
TECHNOLOGIES: dict[str, str] = {
    "python": "Python",
    "javascript": "JavaScript",
    "typescript": "TypeScript",
    "java": "Java",
    "kotlin": "Kotlin",
    "go": "Go",
    "golang": "Go",
    "rust": "Rust",
    "ruby": "Ruby",
    "php": "PHP",
    "c#": "C#",
    "c++": "C++",
    "swift": "Swift",
    "scala": "Scala",
    "bash": "Bash",
    "sql": "SQL",
    "graphql": "GraphQL",
    "grpc": "gRPC",
    "rest": "REST",
    "node": "Node.js",
    "node.js": "Node.js",
    "nodejs": "Node.js",
    "deno": "Deno",
    "react": "React",
    "react native": "React Native",
    "vue": "Vue",
    "angular": "Angular",
    "svelte": "Svelte",
    "next.js": "Next.js",
    "nextjs": "Next.js",
    "express": "Express",
    "django": "Django",
    "flask": "Flask",
    "fastapi": "FastAPI",
    "spring": "Spring",
    "spring boot": "Spring Boot",
    "rails": "Rails",
    "ruby on rails": "Rails",
    "electron": "Electron",
    "webpack": "webpack",
    "vite": "Vite",
    "jest": "Jest",
    "pytest": "pytest",
    "numpy": "NumPy",
    "pandas": "pandas",
    "pytorch": "PyTorch",
    "tensorflow": "TensorFlow",
    "redis": "Redis",
    "postgres": "PostgreSQL",
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite",
    "mongodb": "MongoDB",
    "mongo": "MongoDB",
    "dynamodb": "DynamoDB",
    "cassandra": "Cassandra",
    "elasticsearch": "Elasticsearch",
    "opensearch": "OpenSearch",
    "neo4j": "Neo4j",
    "chromadb": "ChromaDB",
    "kafka": "Kafka",
    "rabbitmq": "RabbitMQ",
    "nginx": "nginx",
    "docker": "Docker",
    "kubernetes": "Kubernetes",
    "k8s": "Kubernetes",
    "helm": "Helm",
    "terraform": "Terraform",
    "ansible": "Ansible",
    "aws": "AWS",
    "lambda": "AWS Lambda",
    "aws lambda": "AWS Lambda",
    "s3": "S3",
    "ec2": "EC2",
    "bedrock": "Bedrock",
    "azure": "Azure",
    "gcp": "Google Cloud",
    "google cloud": "Google Cloud",
    "git": "Git",
    "github": "GitHub",
    "github actions": "GitHub Actions",
    "gitlab": "GitLab",
    "jenkins": "Jenkins",
    "linux": "Linux",
    "oauth": "OAuth",
    "jwt": "JWT",
    "openai": "OpenAI",
    "vscode": "VS Code",
    "vs code": "VS Code",
    "visual studio code": "VS Code",
}

# Common English words: only a technology when written capitalized (or as a tag).
AMBIGUOUS_TECHNOLOGIES = frozenset(
    {"go", "rest", "express", "spring", "react", "swift", "lambda", "helm", "rails", "node", "electron"}
)

# Longest multi-word surface form, in tokens.
MAX_TECH_WORDS = max(len(name.split()) for name in TECHNOLOGIES)

PERSON_CUES = frozenset({"by", "with", "to", "from", "cc", "ask", "ping", "thanks"})

PURPOSE_CUES = frozenset({"for", "about", "regarding"})

ORG_SUFFIXES = frozenset(
    {"inc", "corp", "corporation", "llc", "ltd", "labs", "gmbh", "co", "company", "foundation", "group"}
)

STOPWORDS = frozenset(
    "a an and are as at be been but by can could did do does for from had has have he her his "
    "i if in into is it its me my no not of on or our she so than that the their them then "
    "there these they this those to too up us was we were what when where which while who why "
    "will with would you your all any each every some".split()
)

# Capitalized only because they open a sentence.
LEADING_WORDS = frozenset(
    "add added adding fix fixed fixing use used using update updated remove removed "
    "implement implemented create created make made set setup run ran check checked "
    "note todo see move moved deploy deployed migrate migrated refactor refactored "
    "investigate investigated discussed decided meeting today yesterday tomorrow "
    "also after before during per via".split()
)

SOURCE_EXTENSIONS = frozenset(
    {
        "py", "pyi", "ts", "tsx", "js", "jsx", "mjs", "cjs", "java", "kt", "go", "rs", "rb",
        "php", "cs", "cpp", "cc", "c", "h", "hpp", "swift", "scala", "sh", "sql", "json",
        "yaml", "yml", "toml", "ini", "cfg", "md", "rst", "html", "css", "scss", "vue",
        "tf", "proto", "gradle", "xml", "lock",
    }
)

# Checked in order against the text between two mentions.
RELATION_CUES: tuple[tuple[RelationType, tuple[str, ...]], ...] = (
    (RelationType.DEPENDS_ON, ("depends on", "depend on", "requires", "relies on", "rely on")),
    (RelationType.CREATED_BY, ("created by", "written by", "built by", "authored by")),
    (RelationType.BELONGS_TO, ("owned by", "belongs to", "part of")),
    (RelationType.WORKS_ON, ("works on", "working on", "work on", "maintains")),
    (RelationType.USES, ("uses", "using", "runs on", "built with", "use")),
)
