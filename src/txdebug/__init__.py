from dotenv import load_dotenv
load_dotenv()

# Expose key classes for easier imports
from .models import AnalysisResult, CallNode, TokenFlow, SemanticAction, RiskFlag, FailureReason
from .analyzer import TransactionAnalyzer, AnalysisCache
from .orchestrator import AgentOrchestrator, AgentStatus
