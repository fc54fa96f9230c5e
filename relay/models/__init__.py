from relay.models.empresa import Empresa
from relay.models.evolution_api_config import EvolutionApiConfig
from relay.models.contato import Contato
from relay.models.conversa import Conversa
from relay.models.mensagem import Mensagem
from relay.models.chatbot import ChatbotFlow, ChatbotNode, ChatbotOption, ChatbotSession
from relay.models.message_queue import FailedMessage, MessageQueue
from relay.models.atendimento import Setor, Transferencia
from relay.models.processed_message import ProcessedMessage
